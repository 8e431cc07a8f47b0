"""
Static substitutes used when the recommendation backend cannot answer.
"""
from __future__ import annotations

from typing import Dict, List, Tuple

from .schemas import PlantDetail, Recipe

PLACEHOLDER_IMAGE = "/placeholder.svg?height=200&width=300"

MOCK_SYMPTOM_PLANTS: Dict[str, PlantDetail] = {
    "sleep issues": PlantDetail(
        plantName="Chamomile",
        scientificName="Matricaria chamomilla",
        medicalRating=4,
        edibleRating=3,
        edibleUses="Flowers used in teas.",
        plantImageURL=PLACEHOLDER_IMAGE,
        plantURL="https://en.wikipedia.org/wiki/Matricaria_chamomilla",
        partsUsed="Flowers",
        recipe=(
            "Chamomile Tea: Add 1 tablespoon of dried chamomile flowers to a cup "
            "of hot water. Steep for 5-10 minutes..."
        ),
        benefits="Promotes relaxation, reduces anxiety, improves sleep quality.",
    ),
    "digestive problems": PlantDetail(
        plantName="Oregano",
        scientificName="Origanum vulgare",
        medicalRating=3,
        edibleRating=5,
        edibleUses="Leaves used as a culinary herb.",
        plantImageURL=PLACEHOLDER_IMAGE,
        plantURL="https://en.wikipedia.org/wiki/Oregano",
        partsUsed="Leaves and flowering tops",
        recipe=(
            "Oregano Tea for Digestion: Steep 1-2 teaspoons of dried oregano "
            "leaves in a cup of hot water..."
        ),
        benefits="Antimicrobial properties, soothes digestive discomfort.",
    ),
    "anxiety": PlantDetail(
        plantName="Lavender",
        scientificName="Lavandula angustifolia",
        medicalRating=4,
        edibleRating=2,
        edibleUses="Flowers can be used in culinary preparations, but primarily for aroma.",
        plantImageURL=PLACEHOLDER_IMAGE,
        plantURL="https://en.wikipedia.org/wiki/Lavandula_angustifolia",
        partsUsed="Flowers and leaves",
        recipe=(
            "Lavender Relaxation Tea: Mix 1 teaspoon of dried lavender flowers "
            "with 1 teaspoon of chamomile..."
        ),
        benefits="Calms the nervous system, reduces anxiety and stress.",
    ),
    "headache": PlantDetail(
        plantName="Rosemary",
        scientificName="Salvia rosmarinus",
        medicalRating=3,
        edibleRating=5,
        edibleUses="Leaves used as a culinary herb.",
        plantImageURL=PLACEHOLDER_IMAGE,
        plantURL="https://en.wikipedia.org/wiki/Rosemary",
        partsUsed="Leaves",
        recipe="Rosemary tea: Steep fresh rosemary sprigs in hot water. Believed to help with circulation.",
        benefits="May improve memory and concentration, anti-inflammatory.",
    ),
}

# (keywords, symptom label) checked in order; every match contributes an entry.
SYMPTOM_KEYWORDS: List[Tuple[Tuple[str, ...], str]] = [
    (("sleep", "insomnia"), "sleep issues"),
    (("stomach", "digest"), "digestive problems"),
    (("anxiety", "stress", "nervous"), "anxiety"),
    (("headache", "migraine"), "headache"),
]

PAIN_LABEL = "general discomfort/pain"
WELLNESS_LABEL = "general wellness"


def match_symptoms(medical_concern: str) -> Dict[str, PlantDetail]:
    """
    Keyword-match a free-text concern against the mock plant table.

    Falls back to a single generic entry when nothing matches, and returns an
    empty mapping for an empty concern.
    """
    concern = medical_concern.lower()
    output: Dict[str, PlantDetail] = {}
    for keywords, label in SYMPTOM_KEYWORDS:
        if any(keyword in concern for keyword in keywords):
            output[label] = MOCK_SYMPTOM_PLANTS[label]
    if not output and concern:
        if "pain" in concern:
            output[PAIN_LABEL] = MOCK_SYMPTOM_PLANTS["headache"]
        else:
            output[WELLNESS_LABEL] = MOCK_SYMPTOM_PLANTS["sleep issues"]
    return output


MOCK_RECIPES: Dict[str, Recipe] = {
    "chamomile": Recipe(
        recipeName="Classic Chamomile Tea",
        ingredients=[
            "1 tablespoon dried chamomile flowers",
            "1 cup (250 ml) freshly boiled water",
            "1 teaspoon honey (optional)",
        ],
        instructions=(
            "1. Place the chamomile flowers in a teapot or infuser.\n"
            "2. Pour the hot water over the flowers.\n"
            "3. Cover and steep for 5-10 minutes.\n"
            "4. Strain, stir in honey if desired, and sip slowly before bed."
        ),
    ),
    "lavender": Recipe(
        recipeName="Lavender Calming Tea",
        ingredients=[
            "1 teaspoon dried culinary lavender",
            "1 teaspoon dried chamomile flowers",
            "1 cup (250 ml) freshly boiled water",
        ],
        instructions=(
            "1. Combine the lavender and chamomile in an infuser.\n"
            "2. Pour over the hot water and cover.\n"
            "3. Steep for 5 minutes; longer turns it bitter.\n"
            "4. Strain and drink warm."
        ),
    ),
    "peppermint": Recipe(
        recipeName="Fresh Peppermint Tea",
        ingredients=[
            "A small handful of fresh peppermint leaves",
            "1 cup (250 ml) freshly boiled water",
            "1 slice of lemon (optional)",
        ],
        instructions=(
            "1. Bruise the leaves lightly to release their oils.\n"
            "2. Pour the hot water over the leaves.\n"
            "3. Steep for 5-7 minutes.\n"
            "4. Strain, add lemon if desired, and drink after meals."
        ),
    ),
    "ginger": Recipe(
        recipeName="Ginger Lemon Tonic",
        ingredients=[
            "1 inch (2.5 cm) fresh ginger root, thinly sliced",
            "2 cups (500 ml) water",
            "Juice of half a lemon",
            "1 teaspoon honey",
        ],
        instructions=(
            "1. Simmer the ginger in the water for 10 minutes.\n"
            "2. Remove from the heat and strain.\n"
            "3. Stir in the lemon juice and honey.\n"
            "4. Drink warm."
        ),
    ),
    "rosemary": Recipe(
        recipeName="Rosemary Sprig Infusion",
        ingredients=[
            "1 fresh rosemary sprig (about 4 inches)",
            "1 cup (250 ml) freshly boiled water",
        ],
        instructions=(
            "1. Rinse the sprig and place it in a mug.\n"
            "2. Pour over the hot water and cover.\n"
            "3. Steep for 5-10 minutes, then remove the sprig."
        ),
    ),
    "oregano": Recipe(
        recipeName="Oregano Digestive Tea",
        ingredients=[
            "1-2 teaspoons dried oregano leaves",
            "1 cup (250 ml) freshly boiled water",
            "1 teaspoon honey (optional)",
        ],
        instructions=(
            "1. Put the oregano in an infuser.\n"
            "2. Pour over the hot water and steep for 10 minutes.\n"
            "3. Strain, sweeten if desired, and drink after a meal."
        ),
    ),
}


def mock_recipe(plant_name: str, scientific_name: str = "") -> Recipe:
    """Look up a canned recipe for the plant, or build a plain infusion."""
    key = plant_name.strip().lower()
    if key in MOCK_RECIPES:
        return MOCK_RECIPES[key].model_copy(deep=True)
    name = plant_name.strip() or scientific_name.strip() or "Herbal"
    return Recipe(
        recipeName=f"Simple {name} Infusion",
        ingredients=[
            f"1-2 teaspoons dried {name.lower()} (or a small handful fresh)",
            "1 cup (250 ml) freshly boiled water",
        ],
        instructions=(
            f"1. Place the {name.lower()} in a cup or infuser.\n"
            "2. Pour over the hot water and cover.\n"
            "3. Steep for 5-10 minutes.\n"
            "4. Strain and drink warm. Check with a healthcare provider before regular use."
        ),
    )
