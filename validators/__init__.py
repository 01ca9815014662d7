# validators/__init__.py
"""
Built-in validators. Every module in this package registers its validators into the
default registry on import (see core.assessment.validator.load_default_validators).
"""
