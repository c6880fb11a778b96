"""
Constants and static data for Aquamonitor.
Centralizes the analysis parameter catalogue and default amenity types.
"""

# Analysis parameters in display order: (key, label, unit)
ANALYSIS_PARAMS = [
    ('ph', 'pH', None),
    ('cloro_libre', 'Cloro libre', 'mg/L'),
    ('cloro_total', 'Cloro total', 'mg/L'),
    ('cloraminas', 'Cloraminas', 'mg/L'),
    ('acidoiso', 'Ácido isocianúrico', 'mg/L'),
    ('alcalinidad', 'Alcalinidad (como CaCO₃)', 'mg/L'),
    ('fe', 'Hierro (Fe)', 'mg/L'),
    ('cu', 'Cobre (Cu)', 'mg/L'),
    ('turbidez', 'Turbidez', 'NTU'),
    ('temperatura', 'Temperatura', '°C'),
    ('sdt', 'Sólidos disueltos totales (TDS)', 'mg/L'),
    ('conductividad', 'Conductividad', 'µS/cm'),
    ('dureza_calcio', 'Dureza calcio (como CaCO₃)', 'mg/L'),
    ('lsi', 'Índice de saturación de Langelier (LSI)', None),
    ('rsi', 'Índice de estabilidad de Ryznar (RSI)', None),
    ('nitritos', 'Nitritos', 'mg/L'),
    ('zinc', 'Zinc', 'mg/L'),
    ('t3dt22', '3DT22', 'UFC/100ml'),
    ('oxigeno_disuelto', 'Oxígeno disuelto', 'mg/L'),
    ('ivl', 'IVL', None),
]

PARAM_KEYS = [key for key, _, _ in ANALYSIS_PARAMS]

# Calculated from other readings; a manual entry is only kept when the
# calculation has no result
DERIVED_PARAMS = ['cloraminas', 'lsi', 'rsi']

# Inputs of the derived-metric calculator
CHLORAMINE_INPUTS = ['cloro_total', 'cloro_libre']
SATURATION_INPUTS = ['ph', 'temperatura', 'dureza_calcio', 'alcalinidad', 'sdt']

# Seeded on first start: (code, nombre, descripcion)
DEFAULT_AMENITY_TYPES = [
    ('POOL', 'Alberca', 'Alberca recreativa de uso general'),
    ('SPA', 'Jacuzzi / Spa', 'Tina de hidromasaje con agua caliente'),
    ('KIDS_POOL', 'Chapoteadero', 'Alberca infantil de poca profundidad'),
    ('FOUNTAIN', 'Fuente', 'Fuente ornamental sin contacto'),
]


def is_valid_param(key):
    """Return True if key is a known analysis parameter."""
    return key in PARAM_KEYS


def get_param(key):
    """Return {'key', 'label', 'unit'} for a parameter, or None."""
    for param_key, label, unit in ANALYSIS_PARAMS:
        if param_key == key:
            return {'key': param_key, 'label': label, 'unit': unit}
    return None


def get_params():
    """Return the full catalogue as a list of dicts."""
    return [{'key': k, 'label': label, 'unit': unit} for k, label, unit in ANALYSIS_PARAMS]
