"""
Water Chemistry Calculator for Aquamonitor.

Derived parameters for pool and spa lab analyses:
- Combined chlorine (chloramines) from total and free chlorine
- Langelier Saturation Index (LSI)
- Ryznar Stability Index (RSI)
- Standalone LSI/RSI balance calculator with adjustment hints

No database tables required -- pure calculation logic. The core functions
never raise: missing, malformed or out-of-domain input yields None.

Rounding: half away from zero on the float's shortest decimal form, so
2.675 -> 2.68 and -0.315 -> -0.32 (the built-in round() gives 2.67).
"""

import logging
import math
from decimal import Decimal, ROUND_HALF_UP, localcontext
from typing import Any, Callable, Dict, Mapping, Optional

from parameters import CHLORAMINE_INPUTS, SATURATION_INPUTS, DERIVED_PARAMS

logger = logging.getLogger(__name__)

Observer = Callable[[str, Dict[str, Any]], None]

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

KELVIN_OFFSET = 273
PHS_BASE = 9.3
TEMP_COEFFICIENT = -13.12
TEMP_INTERCEPT = 34.55
CALCIUM_OFFSET = 0.4

# LSI bands: (upper bound, inclusive?, status)
LSI_BANDS = [
    (-0.5, False, 'corrosive'),
    (-0.3, False, 'slightly_corrosive'),
    (0.3, True, 'balanced'),
    (0.5, True, 'slightly_scaling'),
]
LSI_ABOVE = 'scaling'

RSI_BANDS = [
    (6.0, False, 'heavy_scaling'),
    (6.5, False, 'moderate_scaling'),
    (7.5, True, 'balanced'),
    (8.0, True, 'slightly_corrosive'),
    (8.5, True, 'moderate_corrosive'),
]
RSI_ABOVE = 'heavy_corrosive'

# Balance calculator recommendations (mg/L as CaCO3)
ALKALINITY_OK_RANGE = (80.0, 150.0)
ALKALINITY_TARGET = '80-120'
CALCIUM_OK_RANGE = (200.0, 400.0)
CALCIUM_TARGET = '200-400'
PH_ADJUST_THRESHOLD = 0.1


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def round_half_up(value: float, places: int = 2) -> float:
    """Round half away from zero using the float's shortest repr."""
    exact = Decimal(repr(value))
    with localcontext() as ctx:
        # quantize fails once the result needs more digits than the precision
        ctx.prec = max(28, exact.adjusted() + places + 2)
        rounded = float(exact.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP))
    return rounded + 0.0  # -0.0 -> 0.0


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _notify(observer: Optional[Observer], event: str, details: Dict[str, Any]) -> None:
    logger.debug(f"{event}: {details}")
    if observer is None:
        return
    try:
        observer(event, details)
    except Exception as e:
        logger.warning(f"Water chemistry observer failed on '{event}': {e}")


def to_nullable_number(raw: Any) -> Optional[float]:
    """Coerce a form value to float, or None when missing or malformed.

    Empty strings, unparsable text, booleans, NaN and infinities all map
    to None. Never raises.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, str):
        raw = raw.strip()
        # float() accepts digit separators, form input does not
        if not raw or '_' in raw:
            return None
    try:
        value = float(raw)
    except (TypeError, ValueError, OverflowError):
        return None
    return value if math.isfinite(value) else None


# ---------------------------------------------------------------------------
# Derived metrics
# ---------------------------------------------------------------------------

def compute_chloramines(total_chlorine: Optional[float],
                        free_chlorine: Optional[float]) -> Optional[float]:
    """Combined chlorine = total - free, in ppm.

    A negative difference is an inconsistent reading and returns None.
    """
    if not _is_number(total_chlorine) or not _is_number(free_chlorine):
        return None
    combined = total_chlorine - free_chlorine
    if combined < 0 or not math.isfinite(combined):
        return None
    return round_half_up(combined)


def saturation_ph(temperature_c: Optional[float], calcium_hardness: Optional[float],
                  alkalinity: Optional[float], tds: Optional[float]) -> Optional[float]:
    """Saturation pH (pHs) of the Langelier formula, unrounded.

        A = (log10(TDS) - 1) / 10
        B = -13.12 * log10(T + 273) + 34.55
        C = log10(Ca hardness) - 0.4
        D = log10(alkalinity)
        pHs = (9.3 + A + B) - (C + D)

    Returns None when an input is missing or a logarithm would be undefined
    (TDS, hardness or alkalinity <= 0, or T <= -273 C).
    """
    inputs = (temperature_c, calcium_hardness, alkalinity, tds)
    if not all(_is_number(v) for v in inputs):
        return None
    if tds <= 0 or calcium_hardness <= 0 or alkalinity <= 0:
        return None
    if temperature_c + KELVIN_OFFSET <= 0:
        return None

    a = (math.log10(tds) - 1) / 10
    b = TEMP_COEFFICIENT * math.log10(temperature_c + KELVIN_OFFSET) + TEMP_INTERCEPT
    c = math.log10(calcium_hardness) - CALCIUM_OFFSET
    d = math.log10(alkalinity)
    phs = (PHS_BASE + a + b) - (c + d)
    return phs if math.isfinite(phs) else None


def compute_lsi(ph: Optional[float], temperature_c: Optional[float],
                calcium_hardness: Optional[float], alkalinity: Optional[float],
                tds: Optional[float]) -> Optional[float]:
    """Langelier Saturation Index: pH - pHs, rounded to 2 decimals."""
    if not _is_number(ph):
        return None
    phs = saturation_ph(temperature_c, calcium_hardness, alkalinity, tds)
    if phs is None:
        return None
    lsi = ph - phs
    if not math.isfinite(lsi):
        return None
    return round_half_up(lsi)


def compute_rsi(ph: Optional[float], temperature_c: Optional[float],
                calcium_hardness: Optional[float], alkalinity: Optional[float],
                tds: Optional[float]) -> Optional[float]:
    """Ryznar Stability Index: 2 * pHs - pH, rounded to 2 decimals.

    pHs is taken back from the rounded LSI (pHs = pH - LSI) so the stored
    LSI and RSI of an analysis are always consistent with each other.
    """
    lsi = compute_lsi(ph, temperature_c, calcium_hardness, alkalinity, tds)
    if lsi is None or not _is_number(ph):
        return None
    phs = ph - lsi
    rsi = 2 * phs - ph
    if not math.isfinite(rsi):
        return None
    return round_half_up(rsi)


def compute_derived_metrics(measurements: Mapping[str, Any],
                            observer: Optional[Observer] = None) -> Dict[str, float]:
    """Compute every derived metric the measurements allow.

    Args:
        measurements: Mapping of parameter name to raw value (string,
            number or None). Keys not used by the calculator are ignored.
        observer: Optional callback(event, details) for debug visibility.

    Returns:
        Dict with only the keys that could be computed: any of
        'cloraminas', 'lsi', 'rsi'. Missing keys mean "absent", never 0.
    """
    values = {
        key: to_nullable_number(measurements.get(key))
        for key in CHLORAMINE_INPUTS + SATURATION_INPUTS
    }
    _notify(observer, 'inputs', dict(values))

    derived = {}

    if all(values[k] is not None for k in CHLORAMINE_INPUTS):
        cloraminas = compute_chloramines(values['cloro_total'], values['cloro_libre'])
        if cloraminas is not None:
            derived['cloraminas'] = cloraminas
        _notify(observer, 'chloramines', {'cloraminas': cloraminas})

    saturation_args = (
        values['ph'], values['temperatura'], values['dureza_calcio'],
        values['alcalinidad'], values['sdt'],
    )
    if all(v is not None for v in saturation_args):
        lsi = compute_lsi(*saturation_args)
        rsi = compute_rsi(*saturation_args)
        if lsi is not None:
            derived['lsi'] = lsi
        if rsi is not None:
            derived['rsi'] = rsi
        _notify(observer, 'saturation', {'lsi': lsi, 'rsi': rsi})
    else:
        missing = [k for k in SATURATION_INPUTS if values[k] is None]
        _notify(observer, 'saturation_skipped', {'missing': missing})

    return derived


def merge_derived(record: Mapping[str, Any], derived: Mapping[str, Any]) -> Dict[str, Any]:
    """Overlay computed metrics on a record.

    A derived key replaces the record's value only when it was computed;
    otherwise whatever was entered manually is kept.
    """
    merged = dict(record)
    for key in DERIVED_PARAMS:
        if derived.get(key) is not None:
            merged[key] = derived[key]
    return merged


# ---------------------------------------------------------------------------
# Status bands
# ---------------------------------------------------------------------------

def _classify(value, bands, above):
    if value is None:
        return None
    for bound, inclusive, status in bands:
        if value < bound or (inclusive and value == bound):
            return status
    return above


def classify_lsi(lsi: Optional[float]) -> Optional[str]:
    """Corrosive (negative) to scaling (positive) band for an LSI value."""
    return _classify(lsi, LSI_BANDS, LSI_ABOVE)


def classify_rsi(rsi: Optional[float]) -> Optional[str]:
    """Scaling (low) to corrosive (high) band for an RSI value."""
    return _classify(rsi, RSI_BANDS, RSI_ABOVE)


# ---------------------------------------------------------------------------
# Balance calculator
# ---------------------------------------------------------------------------

def calculate_water_balance(ph, tds, temperature_c, alkalinity, calcium_hardness) -> Dict:
    """
    Standalone LSI / RSI calculator with adjustment hints.

    Unlike compute_derived_metrics this is an explicit user action, so bad
    input raises ValueError with a message meant for the user.

    Returns dict with 'lsi', 'rsi', 'phs' (3 decimals), 'lsi_status',
    'rsi_status' and 'adjustments'.
    """
    raw = {
        'ph': ph, 'tds': tds, 'temperature_c': temperature_c,
        'alkalinity': alkalinity, 'calcium_hardness': calcium_hardness,
    }
    values = {k: to_nullable_number(v) for k, v in raw.items()}
    missing = [k for k, v in values.items() if v is None]
    if missing:
        raise ValueError(f"All fields must be numeric; invalid: {', '.join(missing)}")

    for key in ('tds', 'alkalinity', 'calcium_hardness'):
        if values[key] <= 0:
            raise ValueError("TDS, alkalinity and calcium hardness must be greater than 0")

    phs = saturation_ph(values['temperature_c'], values['calcium_hardness'],
                        values['alkalinity'], values['tds'])
    if phs is None:
        raise ValueError("Temperature must be above -273 C")

    lsi = values['ph'] - phs
    rsi = 2 * phs - values['ph']
    result = {
        'lsi': round_half_up(lsi, 3),
        'rsi': round_half_up(rsi, 3),
        'phs': round_half_up(phs, 3),
    }
    result['lsi_status'] = classify_lsi(result['lsi'])
    result['rsi_status'] = classify_rsi(result['rsi'])
    result['adjustments'] = _balance_adjustments(
        values['ph'], result['phs'], values['alkalinity'], values['calcium_hardness'])

    logger.info(
        f"Water balance: LSI={result['lsi']} ({result['lsi_status']}), "
        f"RSI={result['rsi']} ({result['rsi_status']})"
    )
    return result


def _balance_adjustments(ph, target_ph, alkalinity, calcium_hardness):
    ph_diff = target_ph - ph
    alk_low, alk_high = ALKALINITY_OK_RANGE
    ca_low, ca_high = CALCIUM_OK_RANGE
    alk_off = alkalinity < alk_low or alkalinity > alk_high
    ca_off = calcium_hardness < ca_low or calcium_hardness > ca_high

    return {
        'ph': {
            'needed': abs(ph_diff) > PH_ADJUST_THRESHOLD,
            'direction': 'raise' if ph_diff > 0 else 'lower',
            'amount': round_half_up(abs(ph_diff)),
            'target_ph': round_half_up(target_ph),
        },
        'alkalinity': {
            'current': alkalinity,
            'recommended': ALKALINITY_TARGET if alk_off else 'OK',
            'needs_adjustment': alk_off,
        },
        'calcium_hardness': {
            'current': calcium_hardness,
            'recommended': CALCIUM_TARGET if ca_off else 'OK',
            'needs_adjustment': ca_off,
        },
    }
