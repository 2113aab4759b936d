"""Customer-facing message catalogue (pt-BR and en)."""

from datetime import date

DEFAULT_LOCALE = "pt-BR"

CATALOG: dict[str, dict[str, str]] = {
    "pt-BR": {
        "rate_limited": "Muitas mensagens enviadas. Por favor, aguarde um momento.",
        "planner_apology": (
            "Desculpe, estou com dificuldades técnicas no momento. "
            "Por favor, tente novamente em alguns instantes."
        ),
        "generic_failure": (
            "Desculpe, não consegui processar sua mensagem agora. "
            "Por favor, tente novamente em instantes."
        ),
        "fallback_reply": "Como posso ajudar você?",
        "already_handled": "Já cuidei disso há pouco, veja as informações acima. Posso ajudar com mais alguma coisa?",
        "already_handled.search_properties": (
            "Já te mostrei as opções para essa busca logo acima. "
            "Quer ajustar algum filtro, como datas, localização ou preço?"
        ),
        "already_handled.send_property_media": (
            "As fotos e vídeos desse imóvel já foram enviados. Quer ver outro imóvel?"
        ),
        "already_handled.create_reservation": (
            "Essa reserva já foi registrada. Quer que eu gere o pagamento?"
        ),
        "already_handled.generate_pix_payment": (
            "O PIX para esse pagamento já foi gerado logo acima."
        ),
        "function_failed": "Não consegui concluir essa ação agora. Pode tentar novamente?",
        "function_failed.validation": (
            "Faltaram algumas informações para concluir o pedido. Pode me passar os detalhes novamente?"
        ),
        "function_failed.not_found": "Não encontrei esse imóvel. Quer que eu faça uma nova busca?",
        "function_failed.conflict": "Infelizmente essas datas não estão disponíveis. Quer tentar outras datas?",
        "function_failed.capacity": "Esse imóvel não comporta essa quantidade de hóspedes.",
        "search_found": "Encontrei {count} propriedade(s) disponível(is)!",
        "search_empty": "Não encontrei propriedades com esses critérios.",
        "search_header": "Aqui estão as melhores opções:",
        "property_details": "Aqui estão os detalhes de {name}.",
        "price_calculated": "Calculei o valor para {nights} noite(s) em {name}.",
        "availability_ok": "{name} está disponível de {check_in} a {check_out}!",
        "availability_conflict": "{name} não está disponível de {check_in} a {check_out}.",
        "media_sent": "Enviei {count} arquivo(s) de mídia de {name}.",
        "media_empty": "{name} ainda não tem fotos ou vídeos cadastrados.",
        "client_registered": "Cadastro de {name} atualizado com sucesso!",
        "reservation_created": "Reserva criada com sucesso! Código: {code}",
        "pix_created": "PIX gerado no valor de {amount}. Use o código copia e cola abaixo:\n{br_code}",
        "transaction_created": "Transação criada! Valor da entrada: {amount}, com vencimento em {due_date}.",
        "quote_title": "💰 *Orçamento*",
        "quote_nights": "{nights} noite(s): {amount}",
        "quote_extra_guests": "Hóspedes extras: {amount}",
        "quote_cleaning": "Taxa de limpeza: {amount}",
        "quote_service": "Taxa de serviço: {amount}",
        "quote_total": "*Total: {amount}*",
        "per_night": "/noite",
        "guests": "hóspedes",
        "bedrooms": "quartos",
    },
    "en": {
        "rate_limited": "Too many messages sent. Please wait a moment.",
        "planner_apology": (
            "Sorry, I'm having technical difficulties right now. "
            "Please try again in a few moments."
        ),
        "generic_failure": (
            "Sorry, I couldn't process your message right now. "
            "Please try again shortly."
        ),
        "fallback_reply": "How can I help you?",
        "already_handled": "I took care of that a moment ago, see the details above. Anything else I can help with?",
        "already_handled.search_properties": (
            "I already showed you the options for this search above. "
            "Would you like to adjust a filter, such as dates, location or price?"
        ),
        "already_handled.send_property_media": (
            "The photos and videos for this property were already sent. Want to see another one?"
        ),
        "already_handled.create_reservation": (
            "That reservation is already registered. Shall I generate the payment?"
        ),
        "already_handled.generate_pix_payment": "The PIX payment was already generated above.",
        "function_failed": "I couldn't complete that action right now. Could you try again?",
        "function_failed.validation": (
            "Some details were missing to complete the request. Could you send them again?"
        ),
        "function_failed.not_found": "I couldn't find that property. Shall I run a new search?",
        "function_failed.conflict": "Unfortunately those dates are not available. Want to try other dates?",
        "function_failed.capacity": "This property does not fit that many guests.",
        "search_found": "I found {count} available propert(ies)!",
        "search_empty": "I couldn't find properties matching those criteria.",
        "search_header": "Here are the best options:",
        "property_details": "Here are the details for {name}.",
        "price_calculated": "I calculated the price for {nights} night(s) at {name}.",
        "availability_ok": "{name} is available from {check_in} to {check_out}!",
        "availability_conflict": "{name} is not available from {check_in} to {check_out}.",
        "media_sent": "I sent {count} media file(s) of {name}.",
        "media_empty": "{name} has no photos or videos yet.",
        "client_registered": "{name}'s profile was updated successfully!",
        "reservation_created": "Reservation created successfully! Code: {code}",
        "pix_created": "PIX payment generated for {amount}. Use the copy-and-paste code below:\n{br_code}",
        "transaction_created": "Transaction created! Down payment: {amount}, due on {due_date}.",
        "quote_title": "💰 *Quote*",
        "quote_nights": "{nights} night(s): {amount}",
        "quote_extra_guests": "Extra guests: {amount}",
        "quote_cleaning": "Cleaning fee: {amount}",
        "quote_service": "Service fee: {amount}",
        "quote_total": "*Total: {amount}*",
        "per_night": "/night",
        "guests": "guests",
        "bedrooms": "bedrooms",
    },
}


def get_message(key: str, locale: str | None = None, **params: object) -> str:
    """Look up a catalogue entry, falling back to the default locale.

    Dotted keys (``function_failed.not_found``) fall back to their prefix
    when the specific variant is missing.
    """
    table = CATALOG.get(locale or DEFAULT_LOCALE, CATALOG[DEFAULT_LOCALE])
    template = table.get(key)
    if template is None and "." in key:
        template = table.get(key.split(".", 1)[0])
    if template is None:
        template = CATALOG[DEFAULT_LOCALE].get(key) or CATALOG[DEFAULT_LOCALE]["generic_failure"]
    return template.format(**params) if params else template


def has_message(key: str, locale: str | None = None) -> bool:
    table = CATALOG.get(locale or DEFAULT_LOCALE, CATALOG[DEFAULT_LOCALE])
    return key in table


def format_date(value: date | str, locale: str | None = None) -> str:
    """``31/12/2025`` for pt-BR, ISO otherwise."""
    if isinstance(value, str):
        value = date.fromisoformat(value)
    if (locale or DEFAULT_LOCALE) == "pt-BR":
        return value.strftime("%d/%m/%Y")
    return value.isoformat()


def format_currency(amount: float, currency: str = "BRL", locale: str | None = None) -> str:
    """Format an amount the way customers read it, e.g. ``R$ 1.234,56``."""
    symbol = {"BRL": "R$", "USD": "US$", "EUR": "€"}.get(currency, currency)
    formatted = f"{amount:,.2f}"
    if (locale or DEFAULT_LOCALE) == "pt-BR":
        formatted = formatted.replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{symbol} {formatted}"
