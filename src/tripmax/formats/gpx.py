# tripmax/formats/gpx.py
"""
GPX helpers for TripMax

Lets recorded GPX tracks flow through the same pipeline as app uploads:
- GPX namespace handling
- reading trackpoints (lat, lon, ele, time, speed) into TrackPoints
- filling in per-point speed when the device did not record one

GPX 1.1 has no core <speed> element. Garmin writes it under
<extensions><gpxtpx:TrackPointExtension><gpxtpx:speed>, GPX 1.0 under <speed>.
When no speed is present we derive it from the step that ends at the point
(distance / elapsed time), which is what the device would have reported.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional
from xml.etree import ElementTree as ET

from tripmax.analyze.geomath import implied_speed
from tripmax.errors import InvalidPayload
from tripmax.formats.route import TrackPoint, TripRequest, parse_timestamp

# GPX 1.1 default namespace
GPX_NS = {"gpx": "http://www.topografix.com/GPX/1/1"}


def read_gpx(path: Path) -> ET.ElementTree:
    """
    Read a GPX file into an ElementTree.

    Raises:
      InvalidPayload if the XML cannot be parsed; OSError on read failure
    """
    try:
        return ET.parse(path)
    except ET.ParseError as e:
        raise InvalidPayload(f"{path}: not a valid GPX document ({e})") from e


def _local(tag: str) -> str:
    """Strip any '{namespace}' prefix from an ElementTree tag."""
    return tag.rsplit("}", 1)[-1]


def _child_text(el: ET.Element, name: str) -> Optional[str]:
    """Text of the first direct child named `name`, namespace-agnostic."""
    for child in el:
        if _local(child.tag) == name:
            return (child.text or "").strip() or None
    return None


def _speed_text(trkpt: ET.Element) -> Optional[str]:
    """Find a recorded speed anywhere under the trackpoint (core or extensions)."""
    for el in trkpt.iter():
        if el is not trkpt and _local(el.tag) == "speed":
            txt = (el.text or "").strip()
            if txt:
                return txt
    return None


def _float_or_none(text: Optional[str]) -> Optional[float]:
    if text is None:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def extract_trackpoints(tree: ET.ElementTree, *, derive_speed: bool = True) -> list[TrackPoint]:
    """Extract ordered trackpoints from a GPX tree."""
    root = tree.getroot()
    pts: list[TrackPoint] = []

    for trkpt in root.iter():
        if _local(trkpt.tag) != "trkpt":
            continue
        try:
            lat = float(trkpt.get("lat"))
            lon = float(trkpt.get("lon"))
        except (TypeError, ValueError) as e:
            raise InvalidPayload(f"trkpt without usable lat/lon: {trkpt.attrib}") from e

        time = parse_timestamp(_child_text(trkpt, "time"))
        ele = _float_or_none(_child_text(trkpt, "ele"))
        speed = _float_or_none(_speed_text(trkpt))

        if speed is None and derive_speed and pts:
            prev = pts[-1]
            if prev.timestamp is not None and time is not None:
                speed = implied_speed(prev.latlng, prev.timestamp, (lat, lon), time)

        pts.append(TrackPoint(latitude=lat, longitude=lon, speed=speed, altitude=ele, timestamp=time))

    return pts


def read_gpx_trip(path: Path) -> TripRequest:
    """Read a GPX file as a trip-save request (route only, times from the points)."""
    points = extract_trackpoints(read_gpx(path))
    if not points:
        raise InvalidPayload(f"{path}: GPX contains no trackpoints")
    return TripRequest(route=tuple(points))
