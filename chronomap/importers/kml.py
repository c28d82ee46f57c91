"""KML importer (lxml).

Walks every ``Placemark`` of a KML 2.2 document and turns its geometry
into GeoJSON:

- ``Point`` / ``LineString`` / ``Polygon`` (outer + inner boundaries)
- ``MultiGeometry`` of one kind → ``MultiPoint`` / ``MultiLineString`` /
  ``MultiPolygon``; mixed kinds are reported as conversion errors

``ExtendedData`` (untyped ``Data/value`` and typed
``SchemaData/SimpleData``) becomes feature properties, and a
``TimeSpan`` / ``TimeStamp`` becomes the validity interval.

The XML parser is hardened: no entity resolution, no network access,
no huge-tree expansion.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar

from lxml import etree

from chronomap.core.constants import KML
from chronomap.core.exceptions import InvalidParams
from chronomap.importers.base import ConversionResult, FetchResult, Importer
from chronomap.models.params import KmlParams

if TYPE_CHECKING:
    from lxml.etree import _Element

logger = logging.getLogger("chronomap.importers.kml")

KML_NAMESPACE = "http://www.opengis.net/kml/2.2"
NS = {"kml": KML_NAMESPACE}

_SINGLE_KINDS = ("Point", "LineString", "Polygon")
_MULTI_KIND = {"Point": "MultiPoint", "LineString": "MultiLineString", "Polygon": "MultiPolygon"}


class KmlImporter(Importer):
    """Import Placemarks from a KML file."""

    source = KML
    params_model: ClassVar[type[KmlParams]] = KmlParams

    def fetch(self, params: KmlParams) -> FetchResult:
        root = parse_kml_file(Path(params.path))
        placemarks = root.findall(".//kml:Placemark", NS)
        if not placemarks:
            logger.warning("KML has no placemarks | path=%s", params.path)
        records = [placemark_record(index, pm) for index, pm in enumerate(placemarks)]
        return FetchResult(records=records)

    def convert(self, record: Any, params: KmlParams) -> ConversionResult:
        if record.get("error"):
            return ConversionResult.failure(f"{record['id']}: {record['error']}")
        properties = dict(record["properties"])
        if record["description"]:
            properties.setdefault("description", record["description"])
        return self.build_feature(
            params,
            record["geometry"],
            name=record["name"],
            properties=properties,
            valid_from=record["begin"],
            valid_to=record["end"],
        )


# ---------------------------------------------------------------------------
# Document parsing
# ---------------------------------------------------------------------------


def parse_kml_file(path: Path) -> _Element:
    """Parse *path* with a hardened XML parser.

    Raises:
        InvalidParams: If the file is missing or not well-formed XML.
    """
    try:
        content = path.read_bytes()
    except FileNotFoundError as exc:
        msg = f"KML file not found: {path}"
        raise InvalidParams(msg, errors=[f"path: {msg}"]) from exc
    parser = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=False)
    try:
        return etree.fromstring(content, parser=parser)
    except etree.XMLSyntaxError as exc:
        msg = f"KML file is not valid XML: {path} ({exc})"
        raise InvalidParams(msg, errors=[f"path: {msg}"]) from exc


def placemark_record(index: int, placemark: _Element) -> dict[str, Any]:
    """Flatten one Placemark into a raw record (geometry already GeoJSON)."""
    name = _text(placemark.find("kml:name", NS))
    begin = _text(placemark.find("kml:TimeSpan/kml:begin", NS))
    end = _text(placemark.find("kml:TimeSpan/kml:end", NS))
    when = _text(placemark.find("kml:TimeStamp/kml:when", NS))
    record: dict[str, Any] = {
        "id": placemark.get("id") or f"placemark-{index}",
        "name": name,
        "description": _text(placemark.find("kml:description", NS)),
        "properties": extract_extended_data(placemark),
        "begin": begin or when or None,
        "end": end or when or None,
        "geometry": None,
        "error": "",
    }
    try:
        record["geometry"] = placemark_geometry(placemark)
    except ValueError as exc:
        record["error"] = str(exc)
    return record


def placemark_geometry(placemark: _Element) -> dict[str, Any]:
    """GeoJSON geometry of a Placemark.

    Raises:
        ValueError: If the Placemark has no supported geometry.
    """
    multi = placemark.find("kml:MultiGeometry", NS)
    if multi is not None:
        return _multi_geometry(multi)
    for kind in _SINGLE_KINDS:
        elem = placemark.find(f"kml:{kind}", NS)
        if elem is not None:
            return {"type": kind, "coordinates": _coordinates(kind, elem)}
    msg = "Placemark has no Point, LineString, Polygon or MultiGeometry"
    raise ValueError(msg)


def _multi_geometry(multi: _Element) -> dict[str, Any]:
    parts: list[tuple[str, Any]] = []
    for child in multi:
        if not isinstance(child.tag, str):
            continue
        kind = etree.QName(child).localname
        if kind in _SINGLE_KINDS:
            parts.append((kind, _coordinates(kind, child)))
    kinds = {kind for kind, _ in parts}
    if not parts:
        msg = "MultiGeometry has no supported members"
        raise ValueError(msg)
    if len(kinds) > 1:
        msg = f"MultiGeometry mixes member types {sorted(kinds)}"
        raise ValueError(msg)
    kind = kinds.pop()
    return {"type": _MULTI_KIND[kind], "coordinates": [coords for _, coords in parts]}


def _coordinates(kind: str, elem: _Element) -> Any:
    if kind == "Polygon":
        outer = elem.find("kml:outerBoundaryIs/kml:LinearRing/kml:coordinates", NS)
        exterior = parse_coordinates_text(_text(outer))
        if not exterior:
            msg = "Polygon has no exterior coordinates"
            raise ValueError(msg)
        rings = [exterior]
        for inner in elem.findall("kml:innerBoundaryIs/kml:LinearRing/kml:coordinates", NS):
            ring = parse_coordinates_text(_text(inner))
            if ring:
                rings.append(ring)
        return rings

    positions = parse_coordinates_text(_text(elem.find("kml:coordinates", NS)))
    if not positions:
        msg = f"{kind} has no coordinates"
        raise ValueError(msg)
    return positions[0] if kind == "Point" else positions


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def parse_coordinates_text(text: str) -> list[list[float]]:
    """Parse KML coordinate text (``lon,lat[,alt] ...``) into ``[lon, lat]`` pairs.

    Raises:
        ValueError: If a tuple is not numeric or has fewer than two values.
    """
    coords: list[list[float]] = []
    for token in text.split():
        parts = token.split(",")
        if len(parts) < 2:
            msg = f"Malformed coordinate tuple {token!r}"
            raise ValueError(msg)
        try:
            coords.append([float(parts[0]), float(parts[1])])
        except ValueError as exc:
            msg = f"Malformed coordinate tuple {token!r}"
            raise ValueError(msg) from exc
    return coords


def extract_extended_data(placemark: _Element) -> dict[str, str]:
    """``ExtendedData`` of a Placemark as a flat string mapping.

    Handles both ``Data/value`` (untyped) and ``SchemaData/SimpleData``
    (typed via a ``<Schema>``) forms.
    """
    metadata: dict[str, str] = {}
    for data_elem in placemark.findall("kml:ExtendedData/kml:Data", NS):
        key = data_elem.get("name", "")
        value = _text(data_elem.find("kml:value", NS))
        if key and value:
            metadata[key] = value
    for simple in placemark.findall("kml:ExtendedData/kml:SchemaData/kml:SimpleData", NS):
        key = simple.get("name", "")
        value = _text(simple)
        if key and value:
            metadata[key] = value
    return metadata


def _text(elem: _Element | None) -> str:
    if elem is None or elem.text is None:
        return ""
    return elem.text.strip()
