from __future__ import annotations

import asyncio
import json
import re
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path

from domain.capture_profiles import list_capture_profiles
from domain.models import AcquireMode, EngineConfig, OperatorInstruction, ReferenceData


@dataclass(frozen=True)
class ConnectivityResult:
    """Outcome of validate_connectivity(): errors list plus browser info on success."""

    errors: list[str]
    browser_version: str | None = None

    @property
    def ok(self) -> bool:
        return len(self.errors) == 0


_REQUIRED_CONFIG_KEYS = {"CDP_ENDPOINT", "OUTPUT_DIR"}
_ENDPOINT_PATTERN = re.compile(r"^(https?|wss?)://", re.IGNORECASE)
_ITERATION_BOUNDS = (1, 20)
_TIMEOUT_BOUNDS_MS = (1_000, 300_000)


class FileSystemConfigProvider:
    """Reads config.json and reference.json from a config directory.

    Every public method re-reads from disk so that edits
    to the JSON files take effect without restarting the engine.
    """

    def __init__(self, config_dir: str) -> None:
        self._config_dir = Path(config_dir)

    def validate(self) -> list[str]:
        errors: list[str] = []
        config_data = self._validate_json_file(
            self._config_dir / "config.json", _REQUIRED_CONFIG_KEYS, errors,
        )
        reference_path = self._config_dir / "reference.json"
        reference_data = None
        if reference_path.exists():
            reference_data = self._validate_json_file(reference_path, set(), errors)

        if config_data is not None:
            errors.extend(self._validate_config_formats(config_data))
        if reference_data is not None:
            errors.extend(self._validate_reference_formats(reference_data))
        return errors

    @staticmethod
    def _validate_config_formats(data: dict) -> list[str]:
        errors: list[str] = []
        endpoint = str(data.get("CDP_ENDPOINT", ""))
        if not _ENDPOINT_PATTERN.match(endpoint):
            errors.append("CDP_ENDPOINT must start with http://, https://, ws:// or wss://.")

        mode = data.get("ACQUIRE_MODE", AcquireMode.AUTO.value)
        if mode not in {m.value for m in AcquireMode}:
            errors.append(f"ACQUIRE_MODE must be one of auto, attach, launch (got '{mode}').")

        profile = data.get("CAPTURE_PROFILE", "light")
        if profile not in list_capture_profiles():
            errors.append(
                f"CAPTURE_PROFILE '{profile}' is unknown. Use one of: {', '.join(list_capture_profiles())}.",
            )

        iterations = data.get("MAX_FORM_ITERATIONS", 5)
        low, high = _ITERATION_BOUNDS
        if isinstance(iterations, bool) or not isinstance(iterations, int) or not low <= iterations <= high:
            errors.append(f"MAX_FORM_ITERATIONS must be an integer between {low} and {high}.")

        timeout = data.get("ACTION_TIMEOUT_MS", 30_000)
        low, high = _TIMEOUT_BOUNDS_MS
        if isinstance(timeout, bool) or not isinstance(timeout, int) or not low <= timeout <= high:
            errors.append(f"ACTION_TIMEOUT_MS must be an integer between {low} and {high}.")

        input_dirs = data.get("INPUT_DIRS", [])
        if not isinstance(input_dirs, list) or not all(isinstance(d, str) for d in input_dirs):
            errors.append("INPUT_DIRS must be a list of directory paths.")

        for flag in ("HEADLESS", "debug_mode"):
            value = data.get(flag)
            if value is not None and not isinstance(value, bool):
                errors.append(f"{flag} must be a boolean (true/false), not a string.")
        return errors

    @staticmethod
    def _validate_reference_formats(data: dict) -> list[str]:
        errors: list[str] = []
        facts = data.get("facts", {})
        if not isinstance(facts, dict):
            errors.append("reference.json: facts must be an object of question key to answer.")
        elif any(not isinstance(v, (str, int, float)) or isinstance(v, bool) for v in facts.values()):
            errors.append("reference.json: every fact must be a string or a number.")

        instructions = data.get("instructions", [])
        if not isinstance(instructions, list):
            errors.append("reference.json: instructions must be a list.")
            return errors
        for index, item in enumerate(instructions, start=1):
            if not isinstance(item, dict) or not isinstance(item.get("affirmative"), bool):
                errors.append(f"reference.json: instruction #{index} needs a boolean 'affirmative'.")
        return errors

    async def validate_connectivity(self) -> ConnectivityResult:
        """Verify the remote-debugging endpoint answers over the network."""
        config = self.get_config()
        version, err = await asyncio.to_thread(self._check_cdp, config.cdp_endpoint)
        return ConnectivityResult(errors=[err] if err else [], browser_version=version)

    @staticmethod
    def _check_cdp(endpoint: str) -> tuple[str | None, str | None]:
        if not endpoint.lower().startswith("http"):
            return None, None
        url = f"{endpoint.rstrip('/')}/json/version"
        try:
            req = urllib.request.Request(url, method="GET")
            with urllib.request.urlopen(req, timeout=5) as resp:
                payload = json.loads(resp.read().decode("utf-8"))
            return payload.get("Browser", "unknown"), None
        except urllib.error.HTTPError as exc:
            return None, f"CDP endpoint {endpoint} answered {exc.code} {exc.reason}."
        except Exception as exc:
            return None, (
                f"CDP endpoint {endpoint} unreachable: {exc}. "
                "Start Chrome with --remote-debugging-port=9222 or use ACQUIRE_MODE=launch."
            )

    def get_config(self) -> EngineConfig:
        data = self._read_json("config.json")
        return EngineConfig(
            cdp_endpoint=data["CDP_ENDPOINT"],
            acquire_mode=AcquireMode(data.get("ACQUIRE_MODE", AcquireMode.AUTO.value)),
            headless=bool(data.get("HEADLESS", False)),
            capture_profile=data.get("CAPTURE_PROFILE", "light"),
            max_form_iterations=int(data.get("MAX_FORM_ITERATIONS", 5)),
            action_timeout_ms=int(data.get("ACTION_TIMEOUT_MS", 30_000)),
            input_dirs=tuple(self._resolve(d) for d in data.get("INPUT_DIRS", [])),
            output_dir=self._resolve(data["OUTPUT_DIR"]),
            debug_mode=bool(data.get("debug_mode", False)),
        )

    def get_reference_data(self) -> ReferenceData:
        path = self._config_dir / "reference.json"
        if not path.is_file():
            return ReferenceData()
        data = self._read_json("reference.json")
        instructions = [
            OperatorInstruction(
                sequence=int(item.get("sequence", index)),
                affirmative=item["affirmative"],
                question_id=item.get("question_id"),
            )
            for index, item in enumerate(data.get("instructions", []), start=1)
        ]
        facts = {str(k): str(v) for k, v in data.get("facts", {}).items()}
        return ReferenceData(facts=facts, instructions=instructions)

    # -- internal helpers ---------------------------------------------------

    def _resolve(self, path: str) -> str:
        candidate = Path(path).expanduser()
        if not candidate.is_absolute():
            candidate = self._config_dir / candidate
        return str(candidate)

    def _read_json(self, filename: str) -> dict:
        path = self._config_dir / filename
        return json.loads(path.read_text(encoding="utf-8"))

    @staticmethod
    def _validate_json_file(
        path: Path,
        required_keys: set[str],
        errors: list[str],
    ) -> dict | None:
        """Validate a JSON file exists and has required keys.

        Returns the parsed dict on success, or None if the file
        is missing or unparseable.
        """
        if not path.is_file():
            errors.append(f"Missing file: {path}")
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            errors.append(f"Cannot read {path}: {exc}")
            return None
        if not isinstance(data, dict):
            errors.append(f"{path.name} must contain a JSON object")
            return None
        missing = required_keys - set(data.keys())
        if missing:
            errors.append(f"{path.name} missing keys: {', '.join(sorted(missing))}")
            return None
        return data
