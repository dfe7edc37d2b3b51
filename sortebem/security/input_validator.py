# sortebem/security/input_validator.py

import re
import html
import bleach

# Per-field input sanitization applied at every write boundary (raffle
# creation and update, ticket reservation, payment notes, audit details).


class InputValidator:
    def __init__(self):
        self.allowed_html_tags = ['b', 'i', 'em', 'strong', 'p', 'br']
        self.allowed_html_attributes = {}

        self.patterns = {
            'email': re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'),
            'non_digit': re.compile(r'\D'),
            'masked_email': re.compile(r'^(.{1,2})[^@]*(@.*)$'),
            'control_chars': re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]'),
        }

    def sanitize_string(self, input_str, max_length=255):
        """HTML-escape and trim a plain-text field. None becomes ''."""
        if input_str is None:
            return ''
        if not isinstance(input_str, str):
            input_str = str(input_str)
        input_str = self.patterns['control_chars'].sub('', input_str).strip()
        if len(input_str) > max_length:
            input_str = input_str[:max_length]
        return html.escape(input_str, quote=True)

    def sanitize_optional(self, input_str, max_length=255):
        if input_str is None:
            return None
        return self.sanitize_string(input_str, max_length=max_length)

    def sanitize_rich_text(self, input_str, max_length=5000):
        """Keep a small set of formatting tags in long descriptions, strip the rest."""
        if input_str is None:
            return ''
        if not isinstance(input_str, str):
            input_str = str(input_str)
        if len(input_str) > max_length:
            input_str = input_str[:max_length]
        cleaned = bleach.clean(
            input_str,
            tags=self.allowed_html_tags,
            attributes=self.allowed_html_attributes,
            strip=True,
        )
        return cleaned.strip()

    def sanitize_details(self, details):
        """Sanitize the flat key/value payload of an audit entry."""
        clean = {}
        for key, value in (details or {}).items():
            key = self.sanitize_string(key, max_length=64)
            if isinstance(value, str):
                clean[key] = self.sanitize_string(value, max_length=500)
            elif isinstance(value, (list, tuple)):
                clean[key] = [self.sanitize_string(v, max_length=500) if isinstance(v, str) else v for v in value]
            else:
                clean[key] = value
        return clean

    def validate_email(self, email):
        return isinstance(email, str) and bool(self.patterns['email'].match(email))

    def validate_phone(self, phone):
        """Brazilian mobile numbers: 11 digits once formatting is removed."""
        if not isinstance(phone, str):
            return False
        return len(self.patterns['non_digit'].sub('', phone)) == 11

    def mask_email(self, email):
        if not isinstance(email, str):
            return ''
        return self.patterns['masked_email'].sub(r'\1***\2', email)
