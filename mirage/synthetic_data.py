"""
Synthetic data generator for seamless value replacement.

Generates plausible fake values to paint over detected text instead of
blurring it.
"""

import random
import string
from typing import Optional, Set

from .config import DetectionCategory


FALLBACK_VALUE = "[REDACTED]"


class SyntheticDataGenerator:
    """Generates plausible synthetic values per detection category."""

    def __init__(self, seed: Optional[int] = None):
        """Initialize with optional seed for reproducible results."""
        self._rng = random.Random(seed)

        # Track used replacements to avoid duplicates in the same image
        self._used_names: Set[str] = set()
        self._used_emails: Set[str] = set()

        self.first_names = [
            "James", "Mary", "Robert", "Patricia", "John", "Jennifer", "Michael", "Linda",
            "David", "Sarah", "Daniel", "Laura", "Thomas", "Emily", "Paul", "Helen"
        ]

        self.last_names = [
            "Smith", "Johnson", "Williams", "Brown", "Jones", "Garcia", "Miller", "Davis",
            "Wilson", "Moore", "Taylor", "Clark", "Hall", "Young", "King", "Wright"
        ]

        self.streets = ["Maple St", "Oak Ave", "Washington Blvd", "Lakeview Dr", "Parkway Ln"]
        self.cities = ["Springfield", "Riverside", "Georgetown", "Franklin", "Clinton"]

    def generate_credit_card(self) -> str:
        """Test-range card number (4111 prefix) grouped like an embossed card."""
        groups = [str(self._rng.randint(1000, 9999)) for _ in range(3)]
        return "4111 " + " ".join(groups)

    def generate_ssn(self) -> str:
        # 9xx area numbers are never issued
        return f"9{self._rng.randint(10, 99)}-{self._rng.randint(10, 99)}-{self._rng.randint(1000, 9999)}"

    def generate_phone(self) -> str:
        return f"(555) {self._rng.randint(100, 999)}-{self._rng.randint(1000, 9999)}"

    def generate_name(self) -> str:
        replacement = f"{self._rng.choice(self.first_names)} {self._rng.choice(self.last_names)}"

        attempts = 0
        while replacement in self._used_names and attempts < 10:
            replacement = f"{self._rng.choice(self.first_names)} {self._rng.choice(self.last_names)}"
            attempts += 1

        self._used_names.add(replacement)
        return replacement

    def generate_email(self) -> str:
        first = self._rng.choice(self.first_names).lower()
        last = self._rng.choice(self.last_names).lower()
        replacement = f"{first}.{last}@example.com"

        attempts = 0
        while replacement in self._used_emails and attempts < 10:
            first = self._rng.choice(self.first_names).lower()
            last = self._rng.choice(self.last_names).lower()
            replacement = f"{first}.{last}@example.com"
            attempts += 1

        self._used_emails.add(replacement)
        return replacement

    def generate_address(self) -> str:
        number = self._rng.randint(100, 9099)
        zip_code = self._rng.randint(10000, 99999)
        return f"{number} {self._rng.choice(self.streets)}, {self._rng.choice(self.cities)}, ST {zip_code}"

    def generate_passport(self) -> str:
        letter = self._rng.choice(string.ascii_uppercase)
        digits = "".join(self._rng.choices(string.digits, k=8))
        return f"{letter}{digits}"

    def generate_replacement(self, category: DetectionCategory) -> str:
        """Generate the replacement value for a category."""
        category = DetectionCategory.from_tag(category)

        if category is DetectionCategory.CREDIT_CARD:
            return self.generate_credit_card()
        elif category is DetectionCategory.SSN:
            return self.generate_ssn()
        elif category is DetectionCategory.PHONE:
            return self.generate_phone()
        elif category is DetectionCategory.EMAIL:
            return self.generate_email()
        elif category is DetectionCategory.ADDRESS:
            return self.generate_address()
        elif category is DetectionCategory.NAME:
            return self.generate_name()
        elif category is DetectionCategory.PASSPORT:
            return self.generate_passport()
        else:
            return FALLBACK_VALUE

    def reset_session(self):
        """Reset used data tracking for a new image."""
        self._used_names.clear()
        self._used_emails.clear()


def generate_synthetic(category: DetectionCategory, seed: Optional[int] = None) -> str:
    """One-shot replacement value for a category."""
    return SyntheticDataGenerator(seed=seed).generate_replacement(category)
