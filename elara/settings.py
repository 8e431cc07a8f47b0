import json
import os
from pathlib import Path
from typing import Any, Dict


SYSTEM_PROMPT = """You are Elara, an expert in plant herbal remedies.
When a user describes a medical concern, use the 'findHerbalRemedies' tool.
The tool will return plants for identified symptoms.
After the tool provides results, YOU MUST generate a textual response.
In your textual response, clearly present these findings. For each symptom identified by the tool, state the suggested plant and briefly explain its key benefits or uses relevant to that symptom, drawing from the information provided by the tool if available (especially the 'benefits' field).
If the tool returns multiple plants for different symptoms, discuss each one.
If a recipe or method of use is available in the tool's data, incorporate that into your textual description for the respective plant.
When the user asks for a recipe for a plant, use the 'generateRecipe' tool. When they ask to keep it, use 'saveRecipe'; to see what they kept, use 'getSavedRecipes'; to get a printable copy, use 'downloadRecipePDF'.
Conclude your textual response naturally.
Format your response using Markdown. Use headings for symptoms and plant names.
Ensure your final output is a textual message to the user summarizing these points."""

EDIBLE_MODE_PROMPT = (
    "Edible mode is on: prefer plants that are safe to eat or drink, mention "
    "their edible rating, and favour culinary preparations."
)

DEFAULT_SETTINGS: Dict[str, Any] = {
    "llm": {
        "base_url": "http://localhost:8080/v1/chat/completions",
        "api_key": "",
        "model": "gemini-2.0-flash",
        "temperature": 0.2,
        "stream": True,
        "timeout_seconds": 120,
    },
    "chat": {
        "max_steps": 5,
        "system_prompt": SYSTEM_PROMPT,
        "edible_mode_prompt": EDIBLE_MODE_PROMPT,
    },
    "backend": {
        "base_url": "http://localhost:8000",
        "timeout_seconds": 30,
        "mock_fallback": True,
    },
}

ENV_BACKEND_URL = "BACKEND_API_URL"
ENV_LLM_API_KEY = "LLM_API_KEY"
ENV_DATA_DIR = "ELARA_DATA_DIR"


def data_dir() -> Path:
    return Path(os.environ.get(ENV_DATA_DIR) or "data")


class SettingsManager:
    """
    Handles loading and persisting the editable configuration file.

    The file is stored as pretty-printed JSON so it can be edited by hand.
    Environment variables win over the file for the backend URL and the
    language-model API key; they are applied on read and never written back.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._settings: Dict[str, Any] | None = None
        self.path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def settings(self) -> Dict[str, Any]:
        if self._settings is None:
            self._settings = self._load_from_disk()
        return self._settings

    def _load_from_disk(self) -> Dict[str, Any]:
        merged = self._read_file()
        _apply_environment(merged)
        return merged

    def _read_file(self) -> Dict[str, Any]:
        if not self.path.exists():
            self._write(DEFAULT_SETTINGS)
            return json.loads(json.dumps(DEFAULT_SETTINGS))
        with self.path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        # Merge with defaults to backfill new keys without overwriting manual edits.
        merged = json.loads(json.dumps(DEFAULT_SETTINGS))
        _deep_update(merged, data)
        return merged

    def save(self, payload: Dict[str, Any]) -> None:
        config = self._read_file()
        _deep_update(config, payload)
        self._write(config)
        self._settings = None

    @property
    def backend_url(self) -> str:
        return self.settings["backend"]["base_url"].rstrip("/")

    def _write(self, data: Dict[str, Any]) -> None:
        # Persist as stable, human-readable JSON.
        with self.path.open("w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2, sort_keys=True)
            handle.write("\n")


def _apply_environment(config: Dict[str, Any]) -> None:
    backend_url = os.environ.get(ENV_BACKEND_URL)
    if backend_url:
        config["backend"]["base_url"] = backend_url
    api_key = os.environ.get(ENV_LLM_API_KEY)
    if api_key:
        config["llm"]["api_key"] = api_key


def _deep_update(target: Dict[str, Any], source: Dict[str, Any]) -> None:
    """
    Recursively update a mapping, preserving nested structures.
    """
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_update(target[key], value)
        else:
            target[key] = value
