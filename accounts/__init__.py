"""
Account service.

Registration, password and OTP login, session tokens and role-gated access.
"""
