from pydantic import BaseModel, ValidationError

class SettingsSchema(BaseModel):
    rest_auto_continue: bool = False
    default_rest_seconds: int = 60
    weight_unit: str = "kg"
    history_limit: int = 10
    log_level: str = "INFO"
    webhook_url: str | bool = ""

def validate_settings(data: dict) -> None:
    try:
        SettingsSchema(**data)
    except ValidationError as e:
        raise ValueError(str(e))
