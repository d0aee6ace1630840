"""Units, option lists and fixed customer-facing texts."""

from dataclasses import dataclass
from typing import List, Optional

from cantina_bot.services.gateway_service import MenuOption


@dataclass(frozen=True)
class Unit:
    code: str
    title: str


UNITS: List[Unit] = [
    Unit("PERG", "PERG – Rio Grande"),
    Unit("PEJ", "PEJ – Jacuí"),
    Unit("PEC", "PEC – Charqueadas"),
    Unit("PMEC", "PMEC – Montenegro"),
]

ISSUE_NOT_ARRIVED = "PEDIDO_NAO_CHEGOU"
ISSUE_INCOMPLETE = "PEDIDO_INCOMPLETO"

UNIT_PROMPT = (
    "Olá! 👋 Bem-vindo(a) ao atendimento da Cantina.\n"
    "Selecione a unidade em que o seu familiar está:"
)

OPTION_PEDIDO = MenuOption("pedido", "Fazer pedido", "Montar um novo pedido")
OPTION_CONSULTAR = MenuOption("consultar", "Consultar vales e dívidas", "Dívidas, vales e haveres")
OPTION_OUTROS = MenuOption("outros", "Outros / dúvidas", "Problemas com pedidos e outros assuntos")
OPTION_VOLTAR = MenuOption("voltar", "Voltar", "Voltar ao menu anterior")

SERVICE_OPTIONS = [OPTION_PEDIDO, OPTION_CONSULTAR, OPTION_OUTROS, OPTION_VOLTAR]

ORDER_METHOD_PROMPT = "Como você prefere fazer o pedido?"
ORDER_METHOD_OPTIONS = [
    MenuOption("site", "Pedir pelo site", "Escolha os itens no nosso site"),
    MenuOption("texto", "Continuar por texto", "Envie a lista de itens por aqui"),
    OPTION_VOLTAR,
]

OUTROS_PROMPT = "Sobre o que você precisa de ajuda?"
OUTROS_OPTIONS = [
    MenuOption("nao_chegou", "Pedido não chegou"),
    MenuOption("incompleto", "Pedido incompleto ou errado"),
    MenuOption("modificar", "Modificar pedido"),
    MenuOption("cancelar", "Cancelar pedido"),
    MenuOption("atendente", "Falar com atendente"),
    OPTION_VOLTAR,
]

MSG_ORDER_SITE = "Faça o seu pedido pelo site: {url}"
MSG_ORDER_TEXT = (
    "Confira os produtos disponíveis no catálogo: {url}\n\n"
    "Depois, envie o pedido neste formato:\n"
    "*Nome do detento:*\n"
    "*Matrícula / CPF:*\n"
    "*Itens (quantidade – produto):*\n"
    "*Nome de quem compra:*"
)
MSG_NOT_ARRIVED = (
    "As entregas na unidade seguem o cronograma da administração prisional "
    "(normalmente de 3 a 5 dias úteis após a confirmação do pagamento).\n\n"
    "Essa informação resolveu? Responda *1 - Sim* ou *2 - Não*."
)
MSG_INCOMPLETE = (
    "Quando um item está em falta no momento da separação, ele é substituído por "
    "um crédito (haver) no mesmo valor, que pode ser usado no próximo pedido.\n\n"
    "Essa informação resolveu? Responda *1 - Sim* ou *2 - Não*."
)
MSG_MODIFY_PROMPT = "Informe o número do pedido e o que deseja modificar."
MSG_CANCEL_PROMPT = "Informe o número do pedido que deseja cancelar."
MSG_REQUEST_FORWARDED = "Recebemos a sua solicitação e um atendente vai dar continuidade em breve. 🙏"
MSG_THANKS = "Que bom que ajudamos! 😊"
MSG_ASK_NAME_CPF = (
    "Informe o *nome completo* e o *CPF* do detento, separados por hífen.\n"
    "Exemplo: João da Silva – 123.456.789-00"
)
MSG_NAME_CPF_HINT = (
    "Não consegui identificar os dados. Envie no formato:\n"
    "Nome completo – CPF (ex.: João da Silva – 123.456.789-00)"
)
MSG_CONSULT_NOT_CONFIGURED = (
    "A consulta ainda não está disponível para esta unidade. "
    "Vou encaminhar você para um atendente."
)
MSG_CONSULT_FAILED = (
    "Não foi possível realizar a consulta agora. Vou encaminhar você para um atendente."
)
MSG_CONSULT_NOT_FOUND = (
    "Não localizamos cadastro com esses dados. Um atendente vai verificar para você."
)
MSG_BACK_HINT = "Digite *Voltar* para retornar ao menu principal."
MSG_HUMAN_HANDOFF = "Vou encaminhar você para um atendente humano. Aguarde, por favor. 🙋"
MSG_INACTIVITY = (
    "Como não recebemos resposta, estamos encaminhando o seu atendimento para um atendente humano."
)

NONE_FEMININE = "Nenhuma"
NONE_MASCULINE = "Nenhum"


def service_prompt(unit: Optional[Unit]) -> str:
    label = unit.title if unit else "sua unidade"
    return f"Unidade *{label}*. Como podemos ajudar?"


def find_unit(code: Optional[str]) -> Optional[Unit]:
    if not code:
        return None
    wanted = code.strip().lower()
    for unit in UNITS:
        if unit.code.lower() == wanted:
            return unit
    return None


def match_unit(text: str) -> Optional[Unit]:
    """Resolve free text to a unit by exact title, exact code or title prefix."""
    if not text:
        return None
    for unit in UNITS:
        title = unit.title.lower()
        if text == title or text == unit.code.lower() or title.startswith(text):
            return unit
    return None


def unit_options() -> List[MenuOption]:
    return [MenuOption(unit.code, unit.title) for unit in UNITS]
