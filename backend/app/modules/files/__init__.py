# Secure upload/download handling
