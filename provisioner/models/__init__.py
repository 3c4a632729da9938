"""
Model package initializer.

This module exists to make sure SQLAlchemy's registry is populated in any runtime
that uses the ORM outside of `provisioner/main.py` (migrations, one-off scripts).
"""

# Import side-effects: register ORM mappings.
from provisioner.models import scim  # noqa: F401
