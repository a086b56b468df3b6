"""
Schema validation for specd.

Every persisted document (specification metadata, task lists, reports) and
every piece of worker output is checked against a JSON Schema shipped in
specd/schemas. Invalid data is never written, and a stored document that no
longer matches its schema is reported instead of being half-read.
"""

import json
from functools import lru_cache
from pathlib import Path

import jsonschema
from jsonschema.exceptions import best_match

from specd.lib.errors import SpecdError

SCHEMAS_DIR = Path(__file__).resolve().parent.parent / "schemas"


class ValidationError(SpecdError):
    """A document does not match its schema."""
    reason = "INVALID_DATA"

    def __init__(self, schema_name: str, message: str, location: str = None):
        self.schema_name = schema_name
        self.location = location
        super().__init__(f"[{schema_name}] {message}" + (f" at {location}" if location else ""))


@lru_cache(maxsize=None)
def _validator(schema_name: str):
    """Build (once) the validator for a schema, using the draft it declares."""
    schema_path = SCHEMAS_DIR / f"{schema_name}.schema.json"
    if not schema_path.exists():
        raise ValidationError(schema_name, f"Schema file not found: {schema_path}")
    schema = json.loads(schema_path.read_text())
    cls = jsonschema.validators.validator_for(schema)
    cls.check_schema(schema)
    return cls(schema)


def validate(data, schema_name: str) -> None:
    """
    Validate decoded JSON against a named schema.

    When several constraints fail, the most relevant one is reported.

    Raises:
        ValidationError: If validation fails
    """
    error = best_match(_validator(schema_name).iter_errors(data))
    if error is None:
        return
    location = ".".join(str(p) for p in error.absolute_path) or "(root)"
    raise ValidationError(schema_name, error.message, location)


def validate_file(filepath: Path, schema_name: str):
    """Read a stored JSON document and return it once it passes its schema."""
    try:
        data = json.loads(filepath.read_text())
    except FileNotFoundError:
        raise ValidationError(schema_name, f"File not found: {filepath}") from None
    except json.JSONDecodeError as e:
        raise ValidationError(schema_name, f"Corrupt JSON in {filepath.name}: {e}") from None

    validate(data, schema_name)
    return data


def validate_before_write(data, schema_name: str, filepath: Path) -> None:
    """Refuse to persist data that would not load back."""
    try:
        validate(data, schema_name)
    except ValidationError as e:
        raise ValidationError(schema_name, f"Not writing {filepath.name}: {e}") from None
