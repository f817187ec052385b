from pydantic import BaseModel as PydanticBaseModel
from pydantic import ConfigDict, Field, ValidationError, field_validator  # noqa: F401


class BaseModel(PydanticBaseModel):
    """Common pydantic configurations for the exporter"""

    model_config = ConfigDict(protected_namespaces=(), populate_by_name=True)
