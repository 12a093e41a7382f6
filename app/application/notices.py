"""
User-facing notices returned by schedule mutations.

The core never talks to a notification transport; it hands back Notice
objects and the API layer puts them in the response body.
"""
from dataclasses import dataclass, asdict


_TEMPLATES: dict[str, dict] = {
    "RULE_DOWNGRADED_TO_WEEKLY": {
        "severity": "warn",
        "title": "Recorrência convertida para semanal",
        "body": "A recorrência {frequency} foi convertida para semanal às {time} ({weekday}).",
    },
    "NO_OCCURRENCES_GENERATED": {
        "severity": "warn",
        "title": "Nenhuma sessão gerada",
        "body": "A agenda #{schedule_id} não gerou sessões futuras com a regra atual.",
    },
}

WEEKDAY_NAMES = ("domingo", "segunda", "terça", "quarta", "quinta", "sexta", "sábado")


@dataclass(frozen=True)
class Notice:
    code: str
    severity: str
    title: str
    body: str

    def as_dict(self) -> dict:
        return asdict(self)


def build_notice(code: str, **params) -> Notice:
    tpl = _TEMPLATES[code]
    return Notice(
        code=code,
        severity=tpl["severity"],
        title=tpl["title"],
        body=tpl["body"].format(**params),
    )
