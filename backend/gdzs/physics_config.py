"""
Физические константы расчёта запаса воздуха ДАСВ.
Источники: методические рекомендации ГДЗС, паспортные данные аппаратов.
Выделены из расчётного модуля для облегчения настройки и верификации.
"""

# ── Атмосферное давление (бар) ───────────────────────────────────────────────
P_ATM_BAR = 1.0

# ── Режим работы ─────────────────────────────────────────────────────────────
# Тяжёлая работа (эвакуация пострадавшего) удваивает номинальный расход
AVERAGE_WORK_FACTOR = 1.0
HEAVY_WORK_FACTOR = 2.0

# Эвакуация с пострадавшим: расход выше на 50 %
EVACUATION_CONSUMPTION_FACTOR = 1.5

# ── Капюшон спасения ─────────────────────────────────────────────────────────
# P_кап = K * (P_вкл - P_поч.роб) + P_рез
HOOD_FACTOR_SELF_RESCUE = 2.0
HOOD_FACTOR_VICTIM_ASSIST = 3.0

# ── Оценка фактического расхода ──────────────────────────────────────────────
# Минимальное время поиска, защищает от деления на почти ноль (мин)
MIN_SEARCH_TIME_MIN = 0.5
# Фактический расход ограничивается [0.5; 2.0] * номинальный
ACTUAL_CONSUMPTION_MIN_FACTOR = 0.5
ACTUAL_CONSUMPTION_MAX_FACTOR = 2.0

# ── Минимальное давление начала работы у очага (бар) ────────────────────────
# Один баллон (Drager / MSA) и двухбаллонные аппараты (АСП-2)
MIN_WORKING_PRESSURE_SINGLE_CYLINDER_BAR = 200.0
MIN_WORKING_PRESSURE_TWO_CYLINDER_BAR = 140.0

# ── Таймеры (с) ──────────────────────────────────────────────────────────────
SECONDS_PER_MINUTE = 60
COMMUNICATION_INTERVAL_DEFAULT_SEC = 10 * 60
TICK_STEP_SEC = 1.0
