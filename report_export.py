"""
EXPORT TABULAR DE INFORMES
===========================
Aplana un informe guardado (report_json) en tablas pandas para que el
terapeuta lo abra en una hoja de cálculo o lo cruce con otras fuentes:

  temporal_frame  → una fila por fecha
  domain_frame    → una fila por dominio de juego
  risk_frame      → una fila por condición
  report_to_csv   → las tres tablas en un único CSV con columna 'section'
"""

from typing import Mapping

import pandas as pd

TEMPORAL_COLUMNS = ["date", "accuracy", "sessionCount", "avgReactionTime"]
DOMAIN_COLUMNS = [
    "domain", "initialLevel", "currentLevel", "totalXP",
    "sessionsCompleted", "avgAccuracy", "improvement",
]
RISK_COLUMNS = ["condition", "mean", "peak", "samples", "gameTypes"]


def temporal_frame(report: Mapping) -> pd.DataFrame:
    rows = report.get("temporalEvolution") or []
    return pd.DataFrame(rows, columns=TEMPORAL_COLUMNS)


def domain_frame(report: Mapping) -> pd.DataFrame:
    scores = report.get("cognitiveScores") or {}
    rows = [{**score, "domain": name} for name, score in sorted(scores.items())]
    return pd.DataFrame(rows, columns=DOMAIN_COLUMNS)


def risk_frame(report: Mapping) -> pd.DataFrame:
    risks = report.get("riskIndicators") or {}
    rows = [
        {**summary, "gameTypes": ";".join(summary.get("gameTypes", []))}
        for _, summary in sorted(risks.items())
    ]
    return pd.DataFrame(rows, columns=RISK_COLUMNS)


def report_to_csv(report: Mapping) -> str:
    frames = []
    for section, frame in (
        ("temporal", temporal_frame(report)),
        ("domain", domain_frame(report)),
        ("risk", risk_frame(report)),
    ):
        if not frame.empty:
            frames.append(frame.assign(section=section))
    if not frames:
        return ""
    combined = pd.concat(frames, ignore_index=True, sort=False)
    ordered = ["section"] + [c for c in combined.columns if c != "section"]
    return combined[ordered].to_csv(index=False)
