"""
Recipe model and the built-in sample recipe.
"""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


class RecipeStep(BaseModel):
    """One cooking step."""

    order: int = Field(ge=1)
    text: str
    duration_seconds: Optional[int] = Field(default=None, ge=0)
    media_ingredient_slug: Optional[str] = None  # Ingredient pictured with the step


class Recipe(BaseModel):
    """A recipe being cooked."""

    title: str
    summary: str = ""
    total_time_minutes: Optional[int] = Field(default=None, ge=0)
    steps: list[RecipeStep] = Field(min_length=1)

    def step_at(self, index: int) -> RecipeStep:
        """Step at a zero-based index, clamped to the recipe bounds."""
        return self.steps[max(0, min(index, len(self.steps) - 1))]


SAMPLE_RECIPE = Recipe(
    title="Garlic Onion Chicken",
    summary="Sear, simmer, and finish with aromatics.",
    total_time_minutes=35,
    steps=[
        RecipeStep(order=1, text="Pat the chicken dry and season with salt and pepper.", duration_seconds=120),
        RecipeStep(
            order=2,
            text="Slice the onion thinly and mince the garlic.",
            duration_seconds=180,
            media_ingredient_slug="onion",
        ),
        RecipeStep(order=3, text="Sear the chicken for 4 minutes per side until golden.", duration_seconds=480),
        RecipeStep(
            order=4,
            text="Add onion and garlic, stir for 2 minutes, then add broth.",
            duration_seconds=300,
            media_ingredient_slug="garlic",
        ),
        RecipeStep(
            order=5,
            text="Simmer for 10 minutes, then rest for 3 minutes before serving.",
            duration_seconds=780,
        ),
    ],
)


def load_recipe(path: str | Path) -> Recipe:
    """
    Load a recipe from a YAML file.

    The file either is the recipe itself or holds it under a top-level
    ``recipe`` key (so a config preset can carry one). Steps are sorted by
    their ``order``.
    """
    import yaml

    with open(Path(path).expanduser()) as f:
        raw = yaml.safe_load(f) or {}

    if isinstance(raw, dict) and "recipe" in raw:
        raw = raw["recipe"]

    recipe = Recipe.model_validate(raw)
    recipe.steps.sort(key=lambda s: s.order)
    return recipe
