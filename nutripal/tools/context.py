from dataclasses import dataclass


@dataclass
class ToolContext:
    """What a tool may touch during one user turn. The user id never comes from the model."""
    user_id: str
    db: object
    language: object
    nutrition: object
    matcher: object
    recipe_flow: object
    timezone: str = "UTC"
