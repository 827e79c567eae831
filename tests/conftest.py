"""
Shared fixtures: a two-pole SPIDAcalc job with EXISTING, PROPOSED and REMEDY
designs and a single Gigapower span between the poles.

    P1 (35.0, -106.0) ──WEP1 90°── 45.6 m ──WEP2 270°── P2 (35.0, -105.9995)
"""

import copy

import pytest

from spidaqc.parsers import parse_spida

P1_COORDS = (35.0, -106.0)
P2_COORDS = (35.0, -105.9995)
SPAN_MIDPOINT = (35.0, -105.99975)


def metres(value):
    return {"unit": "METRE", "value": value}


def fiber_wire(wire_id, height, size="48ct GIG", owner="Gigapower"):
    return {
        "id": wire_id,
        "owner": {"id": owner, "industry": "COMMUNICATION"},
        "attachmentHeight": metres(height),
        "usageGroup": "COMMUNICATION_BUNDLE",
        "description": f"{owner} {size}",
        "clientItem": {"size": size, "type": "Fiber", "messengerSize": '1/4" EHS'},
    }


def wep(wep_id, to_pole, direction, wires, wep_type="NEXT_POLE", distance=45.6):
    return {
        "id": wep_id,
        "externalId": to_pole,
        "type": wep_type,
        "direction": direction,
        "distance": metres(distance),
        "wires": list(wires),
    }


def design(label, pole_id, wires=(), weps=(), stress=None, attachments=None):
    structure = {
        "pole": {"id": pole_id, "externalId": pole_id, "glc": metres(1.1), "agl": metres(10.5)},
        "wires": list(wires),
        "wireEndPoints": list(weps),
    }
    structure.update(attachments or {})
    result = {"label": label, "structure": structure}
    if stress is not None:
        result["analysisResults"] = {"maxStressRatio": stress}
    return result


def location(label, coords, designs):
    lat, lon = coords
    return {
        "label": label,
        "geographicCoordinate": {"type": "Point", "coordinates": [lon, lat]},
        "designs": designs,
    }


def build_job():
    p1 = location("P1", P1_COORDS, [
        design("Measured Design", "P1", wires=[fiber_wire("W1", 7.0)], stress=0.50),
        design("Recommended Design", "P1", wires=[fiber_wire("W1", 7.0)],
               weps=[wep("WEP1", "P2", 90.0, ["W1"])], stress=0.52),
        design("Remedy", "P1", wires=[fiber_wire("W1", 7.5)],
               weps=[wep("WEP1", "P2", 90.0, ["W1"])], stress=0.55),
    ])
    p2 = location("P2", P2_COORDS, [
        design("Measured Design", "P2", wires=[fiber_wire("W2", 7.0)], stress=0.40),
        design("Recommended Design", "P2", wires=[fiber_wire("W2", 7.0)],
               weps=[wep("WEP2", "P1", 270.0, ["W2"], wep_type="PREVIOUS_POLE")], stress=0.41),
        design("Remedy", "P2", wires=[fiber_wire("W2", 7.0)],
               weps=[wep("WEP2", "P1", 270.0, ["W2"], wep_type="PREVIOUS_POLE")], stress=0.42),
    ])
    return {
        "label": "Test Job",
        "engineer": "J. Smith",
        "comments": "QC fixture",
        "generalLocation": "Albuquerque, NM",
        "address": {"city": "Albuquerque", "state": "NM"},
        "defaultLoadCases": [{"name": "NESC Medium B"}, {"name": "NESC Heavy"}],
        "leads": [{"label": "Lead 1", "locations": [p1, p2]}],
    }


def find_design(job, pole_label, design_label):
    for loc in job["leads"][0]["locations"]:
        if loc["label"] == pole_label:
            for d in loc["designs"]:
                if d["label"] == design_label:
                    return d
    raise KeyError(f"{pole_label}/{design_label}")


@pytest.fixture
def spida_job():
    """A fresh copy of the two-pole job for each test."""
    return copy.deepcopy(build_job())


@pytest.fixture
def parsed_job(spida_job):
    return parse_spida(spida_job)
