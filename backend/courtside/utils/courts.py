"""
Venue helpers: facilities, their courts and locations.

Court names are accepted both as a comma string ("SRC-1,SRC-2") and as a
list, and are always normalized to a list of non-empty strings.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from courtside.services.errors import ValidationError


@dataclass(frozen=True)
class CourtRef:
    name: str
    facility: Optional[str]
    location: Optional[Tuple[float, float]] = None


def parse_court_names(court_names: Optional[Union[str, List[Any]]]) -> List[str]:
    """
    Normalize court_names to a list of non-empty strings.

    - None or "" -> []
    - String (e.g. "SRC-1, SRC-2") -> split on commas, strip whitespace, drop empties
    - List -> coerce each to str(x).strip(), drop empties
    """
    if court_names is None:
        return []
    if isinstance(court_names, str):
        s = court_names.strip()
        if not s:
            return []
        return [x.strip() for x in s.split(",") if x.strip()]
    if isinstance(court_names, list):
        return [str(x).strip() for x in court_names if str(x).strip()]
    return []


def _location(raw: Dict[str, Any]) -> Optional[Tuple[float, float]]:
    lat = raw.get("latitude")
    lng = raw.get("longitude")
    if lat is None or lng is None:
        return None
    return (float(lat), float(lng))


def normalize_facilities(raw_facilities: Optional[Sequence[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """Validate facility payloads; court names must be unique across the venue."""
    normalized: List[Dict[str, Any]] = []
    seen_courts = set()
    seen_names = set()
    for raw in raw_facilities or []:
        name = str(raw.get("name") or "").strip()
        if not name:
            raise ValidationError("Facility name is required")
        if name in seen_names:
            raise ValidationError(f"Duplicate facility name: {name}")
        seen_names.add(name)

        courts = parse_court_names(raw.get("courts"))
        for court in courts:
            if court in seen_courts:
                raise ValidationError(f"Court {court} is listed more than once")
            seen_courts.add(court)

        entry: Dict[str, Any] = {"name": name, "courts": courts}
        location = _location(raw)
        if location is not None:
            lat, lng = location
            if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
                raise ValidationError(f"Facility {name} has an invalid location")
            entry["latitude"] = lat
            entry["longitude"] = lng
        normalized.append(entry)
    return normalized


def flatten_courts(facilities: Optional[Sequence[Dict[str, Any]]]) -> List[CourtRef]:
    """All courts in facility order, then listed order."""
    refs: List[CourtRef] = []
    for facility in facilities or []:
        location = _location(facility)
        for court in parse_court_names(facility.get("courts")):
            refs.append(CourtRef(name=court, facility=facility.get("name"), location=location))
    return refs


def court_names(facilities: Optional[Sequence[Dict[str, Any]]]) -> List[str]:
    return [ref.name for ref in flatten_courts(facilities)]


def facility_for_court(facilities: Optional[Sequence[Dict[str, Any]]], court: Optional[str]) -> Optional[str]:
    if not court:
        return None
    for ref in flatten_courts(facilities):
        if ref.name == court:
            return ref.facility
    return None


def facility_location(
    facilities: Optional[Sequence[Dict[str, Any]]], facility_name: Optional[str]
) -> Optional[Tuple[float, float]]:
    if not facility_name:
        return None
    for facility in facilities or []:
        if facility.get("name") == facility_name:
            return _location(facility)
    return None
