from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    default_tz: str = "Asia/Seoul"
    cadence_api_key: str | None = None
    log_level: str = "INFO"

    # Occurrence building
    default_duration_min: int = 60  # Session length when a rule/override gives none
    default_rule_time: str = "09:00"  # Wall-clock time for rules that omit one
    max_occurrences: int = 100  # Soft cap reported by validate_occurrences
    max_quests: int = 100  # Hard cap on generated schedule/frequency quests

    # Verification policy
    require_objective_signal: bool = True  # Plans need location/photo/screentime in methods AND mandatory

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
