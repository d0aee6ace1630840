import re
from dataclasses import dataclass
from typing import List, Optional

from cantina_bot.services.menu_catalog import NONE_FEMININE, NONE_MASCULINE, Unit
from cantina_bot.services.workbook_service import MIN_IDENTIFIER_DIGITS, CustomerRecord, only_digits

# A plain hyphen only separates when spaced; the CPF itself carries one.
NAME_CPF_SEPARATOR = re.compile(r"\s*[–—]\s*|\s+-\s*|\s*-\s+")


@dataclass(frozen=True)
class ConsultationQuery:
    name: str
    identifier: str


def parse_name_cpf(text: str) -> Optional[ConsultationQuery]:
    """Parse "Name – CPF" or "Name 12345678900"; None when neither form applies."""
    text = (text or "").strip()
    if not text:
        return None

    parts = NAME_CPF_SEPARATOR.split(text, maxsplit=1)
    if len(parts) >= 2 and parts[0].strip():
        return ConsultationQuery(name=parts[0].strip(), identifier=only_digits(parts[1]))

    tokens = text.split()
    candidate = only_digits(tokens[-1])
    if len(candidate) >= MIN_IDENTIFIER_DIGITS:
        return ConsultationQuery(name=" ".join(tokens[:-1]), identifier=candidate)
    return None


def _bullets(items: List[str], empty: str) -> str:
    if not items:
        return empty
    return "\n".join(f"• {item}" for item in items)


def format_summary(record: CustomerRecord, unit: Optional[Unit]) -> str:
    unit_label = unit.title if unit else "-"
    return "\n".join(
        [
            f"📋 *Consulta – {unit_label}*",
            "",
            f"*Nome:* {record.name or '-'}",
            f"*CPF:* {record.cpf or '-'}",
            "",
            "*Dívidas:*",
            _bullets(record.debts, NONE_FEMININE),
            "",
            "*Vales em aberto:*",
            _bullets(record.vouchers, NONE_MASCULINE),
            "",
            "*Haveres:*",
            _bullets(record.credits, NONE_MASCULINE),
        ]
    )
