"""Device-to-profile matching logic."""

from __future__ import annotations

from bluest.core.model import DetectedDevice, SensorProfile


def _device_id_match(device: DetectedDevice, profile: SensorProfile) -> bool:
    return device.advertisement.device_id in profile.match.device_ids


def _name_contains_match(device_name: str, profile: SensorProfile) -> bool:
    lower_name = device_name.lower()
    return any(token.lower() in lower_name for token in profile.match.name_contains)


def match_score(device: DetectedDevice, profile: SensorProfile) -> int:
    id_match = _device_id_match(device, profile)
    name_match = _name_contains_match(device.name, profile)
    if id_match and name_match:
        return 3
    if id_match:
        return 2
    if name_match:
        return 1
    return 0


def best_profile_for_device(
    device: DetectedDevice, profiles: dict[str, SensorProfile]
) -> SensorProfile | None:
    best: SensorProfile | None = None
    best_score = 0
    for profile in profiles.values():
        score = match_score(device, profile)
        if score > best_score:
            best = profile
            best_score = score
    return best
