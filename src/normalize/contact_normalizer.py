"""
Contact normalization for FondCAS.

Standardizes phone numbers to E.164 and lower-cases email addresses before
they are merged into canonical providers.
"""

import logging
from typing import Dict, Optional
import phonenumbers
from phonenumbers import PhoneNumberFormat

from .text import is_blank

logger = logging.getLogger(__name__)


class ContactNormalizer:
    """Normalizes phone numbers and emails."""
    
    def __init__(self, config: Dict):
        """
        Initialize contact normalizer with configuration.
        
        Args:
            config: Contact normalization section of the configuration
        """
        self.config = config
        self.default_region = config.get("default_region", "RO")
        
        logger.info("Initialized ContactNormalizer")
    
    def normalize_phone(self, phone: str) -> Optional[str]:
        """
        Normalize phone number to E164 format.
        
        Args:
            phone: Raw phone number
            
        Returns:
            Normalized phone number in E164 format, or None if invalid
        """
        if is_blank(phone):
            return None
        
        try:
            parsed_phone = phonenumbers.parse(str(phone), self.default_region)
        except phonenumbers.NumberParseException as e:
            logger.debug(f"Failed to parse phone '{phone}': {e}")
            return None
        
        if not phonenumbers.is_valid_number(parsed_phone):
            return None
        
        return phonenumbers.format_number(parsed_phone, PhoneNumberFormat.E164)
    
    def normalize_email(self, email: str) -> Optional[str]:
        """
        Normalize email address.
        
        Args:
            email: Raw email address
            
        Returns:
            Lower-cased email address, or None if malformed
        """
        if is_blank(email) or not isinstance(email, str):
            return None
        
        email = email.strip().lower()
        
        local, _, domain = email.partition("@")
        if local and "." in domain and not domain.startswith(".") and not domain.endswith("."):
            return email
        
        return None
