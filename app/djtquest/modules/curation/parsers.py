from __future__ import annotations

import csv
import io
import re
import zipfile
from dataclasses import dataclass

from app.djtquest.utils import strip_accents

OPTION_LETTERS = ("a", "b", "c", "d", "e")

_HEADER_ALIASES = {
    "pergunta": ("pergunta", "question", "enunciado", "questao"),
    "correta": ("correta", "resposta", "resposta_correta", "correct", "answer", "gabarito"),
    "explicacao": ("explicacao", "explanation", "justificativa"),
    "dificuldade": ("dificuldade", "difficulty", "nivel"),
}
for _letter in OPTION_LETTERS:
    _HEADER_ALIASES[f"alt_{_letter}"] = (f"alt_{_letter}", _letter, f"alternativa_{_letter}", f"opcao_{_letter}", f"option_{_letter}")


@dataclass(frozen=True)
class ImportRowError:
    row_number: int
    message: str


def normalize_header(raw) -> str:
    """'Alternativa A' -> 'alternativa_a', 'Explicação' -> 'explicacao'."""
    s = strip_accents(str(raw or "")).strip().lower()
    s = re.sub(r"\s+", "_", s)
    return re.sub(r"[^a-z0-9_]", "", s)


def _canonical(header: str) -> str | None:
    for key, aliases in _HEADER_ALIASES.items():
        if header in aliases:
            return key
    return None


def _sniff_delimiter(first_line: str) -> str:
    return ";" if first_line.count(";") > first_line.count(",") else ","


def read_csv_rows(text: str) -> list[list[str]]:
    text = text.lstrip("\ufeff")
    first_line = text.split("\n", 1)[0]
    reader = csv.reader(io.StringIO(text), delimiter=_sniff_delimiter(first_line))
    return [list(r) for r in reader]


def read_xlsx_rows(file_bytes: bytes) -> list[list[str]]:
    from openpyxl import load_workbook
    from openpyxl.utils.exceptions import InvalidFileException

    try:
        wb = load_workbook(io.BytesIO(file_bytes), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise ValueError("Planilha XLSX inválida ou corrompida.") from e
    try:
        ws = wb.active
        if ws is None:
            raise ValueError("Planilha XLSX sem abas.")
        return [["" if v is None else str(v) for v in row] for row in ws.iter_rows(values_only=True)]
    finally:
        wb.close()


def rows_to_question_payloads(rows: list[list[str]]) -> tuple[list[tuple[int, dict]], list[ImportRowError]]:
    """
    Map a header row plus data rows to question payloads (the shape create_question accepts).

    Expected columns (any of the aliases, case/accents ignored):
    - pergunta
    - alt_a .. alt_e (at least two)
    - correta: a letter A..E or the text of the correct option
    - explicacao (optional, attached to the correct option)
    - dificuldade (optional)

    Returns ([(row_number, payload)], errors). Rows with no question text are skipped silently.
    """
    if not rows:
        raise ValueError("Arquivo sem cabeçalho.")
    columns: dict[str, int] = {}
    for i, h in enumerate(rows[0]):
        key = _canonical(normalize_header(h))
        if key and key not in columns:
            columns[key] = i
    if "pergunta" not in columns:
        raise ValueError("Coluna 'pergunta' não encontrada no cabeçalho.")

    def cell(row: list[str], key: str) -> str:
        idx = columns.get(key)
        if idx is None or idx >= len(row):
            return ""
        return str(row[idx] or "").strip()

    out: list[tuple[int, dict]] = []
    errors: list[ImportRowError] = []
    for row_number, row in enumerate(rows[1:], start=2):  # 1 = header
        question_text = cell(row, "pergunta")
        if not question_text:
            continue
        letters = [l for l in OPTION_LETTERS if cell(row, f"alt_{l}")]
        texts = [cell(row, f"alt_{l}") for l in letters]
        correct_raw = cell(row, "correta")
        correct_idx: int | None = None
        if len(correct_raw) == 1 and correct_raw.lower() in letters:
            correct_idx = letters.index(correct_raw.lower())
        elif correct_raw:
            wanted = correct_raw.strip().lower()
            correct_idx = next((i for i, t in enumerate(texts) if t.strip().lower() == wanted), None)
        if correct_idx is None:
            errors.append(ImportRowError(row_number, "Alternativa correta ausente ou inválida."))
            continue
        explanation = cell(row, "explicacao") or None
        payload = {
            "question_text": question_text,
            "options": [
                {
                    "option_text": t,
                    "is_correct": i == correct_idx,
                    "explanation": explanation if i == correct_idx else None,
                }
                for i, t in enumerate(texts)
            ],
        }
        difficulty = cell(row, "dificuldade")
        if difficulty:
            payload["difficulty_level"] = difficulty
        out.append((row_number, payload))
    return out, errors


def parse_question_file(filename: str, file_bytes: bytes) -> tuple[list[tuple[int, dict]], list[ImportRowError]]:
    name = (filename or "").lower()
    if name.endswith((".xlsx", ".xlsm")):
        rows = read_xlsx_rows(file_bytes)
    else:
        rows = read_csv_rows(file_bytes.decode("utf-8-sig", errors="replace"))
    return rows_to_question_payloads(rows)
