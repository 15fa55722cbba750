"""
Notification Message Catalog

Titles and bodies per message kind and language. Unknown languages fall
back to English.
"""

from dataclasses import dataclass
from enum import Enum

from common.config import AlarmState, METRIC_UNITS, Metric

DEFAULT_LANGUAGE = "en"
SUPPORTED_LANGUAGES = ("en", "es", "ca")


class MessageKind(str, Enum):
    """Notification classes (also the audit `type` column)"""
    INITIAL_ALARM = "initialAlarm"
    ESCALATION_ALARM = "escalationAlarm"
    NORMAL = "normal"
    SERVICE_UNAVAILABLE = "serviceUnavailable"
    SERVICE_AVAILABLE = "serviceAvailable"

    @classmethod
    def for_state(cls, state: AlarmState) -> "MessageKind":
        return cls(state.value)


@dataclass(frozen=True)
class Message:
    title: str
    body: str
    url_title: str = ""


_ALARM_BODY = {
    "en": {
        Metric.FLOWRATE: "Critical water flow rate detected! Current flow rate: {value} {unit}. "
                         "Please check your water system immediately.",
        Metric.LEVEL: "Critical water level detected! Current level: {value} {unit}. "
                      "Please check your water system immediately.",
    },
    "es": {
        Metric.FLOWRATE: "¡Se ha detectado un flujo de agua crítico! Flujo actual: {value} {unit}. "
                         "Por favor, verifica tu sistema de agua inmediatamente.",
        Metric.LEVEL: "¡Se ha detectado un nivel de agua crítico! Nivel actual: {value} {unit}. "
                      "Por favor, verifica tu sistema de agua inmediatamente.",
    },
    "ca": {
        Metric.FLOWRATE: "S'ha detectat un flux d'aigua crític! Flux actual: {value} {unit}. "
                         "Si us plau, comprova el teu sistema d'aigua immediatament.",
        Metric.LEVEL: "S'ha detectat un nivell d'aigua crític! Nivell actual: {value} {unit}. "
                      "Si us plau, comprova el teu sistema d'aigua immediatament.",
    },
}

_NORMAL_BODY = {
    "en": {
        Metric.FLOWRATE: "Water flow rate is back to normal. Current flow rate: {value} {unit}.",
        Metric.LEVEL: "Water level is back to normal. Current level: {value} {unit}.",
    },
    "es": {
        Metric.FLOWRATE: "El flujo de agua ha vuelto a la normalidad. Flujo actual: {value} {unit}.",
        Metric.LEVEL: "El nivel de agua ha vuelto a la normalidad. Nivel actual: {value} {unit}.",
    },
    "ca": {
        Metric.FLOWRATE: "El flux d'aigua ha tornat a la normalitat. Flux actual: {value} {unit}.",
        Metric.LEVEL: "El nivell d'aigua ha tornat a la normalitat. Nivell actual: {value} {unit}.",
    },
}

_TITLES = {
    "en": {
        MessageKind.INITIAL_ALARM: "FLOOD WARNING! - IMMEDIATE ACTION REQUIRED",
        MessageKind.ESCALATION_ALARM: "FLOOD WARNING! - IMMEDIATE ACTION REQUIRED",
        MessageKind.NORMAL: "FLOOD WARNING CLEARED",
        MessageKind.SERVICE_UNAVAILABLE: "Service Temporarily Unavailable",
        MessageKind.SERVICE_AVAILABLE: "Service Restored",
    },
    "es": {
        MessageKind.INITIAL_ALARM: "¡ALERTA DE INUNDACIÓN! - SE REQUIERE ACCIÓN INMEDIATA",
        MessageKind.ESCALATION_ALARM: "¡ALERTA DE INUNDACIÓN! - SE REQUIERE ACCIÓN INMEDIATA",
        MessageKind.NORMAL: "ALERTA DE INUNDACIÓN DESACTIVADA",
        MessageKind.SERVICE_UNAVAILABLE: "Servicio temporalmente no disponible",
        MessageKind.SERVICE_AVAILABLE: "Servicio restaurado",
    },
    "ca": {
        MessageKind.INITIAL_ALARM: "ALERTA D'INUNDACIÓ! - ACCIÓ IMMEDIATA REQUERIDA",
        MessageKind.ESCALATION_ALARM: "ALERTA D'INUNDACIÓ! - ACCIÓ IMMEDIATA REQUERIDA",
        MessageKind.NORMAL: "ALERTA D'INUNDACIÓ DESACTIVADA",
        MessageKind.SERVICE_UNAVAILABLE: "Servei temporalment no disponible",
        MessageKind.SERVICE_AVAILABLE: "Servei restaurat",
    },
}

_SERVICE_BODY = {
    "en": {
        MessageKind.SERVICE_UNAVAILABLE: "AlertAigua service is currently experiencing issues with data "
                                         "collection. Please be aware that monitoring may be interrupted.",
        MessageKind.SERVICE_AVAILABLE: "AlertAigua service has been restored and is now monitoring your "
                                       "water system normally.",
    },
    "es": {
        MessageKind.SERVICE_UNAVAILABLE: "El servicio AlertAigua está experimentando problemas con la "
                                         "recopilación de datos. Ten en cuenta que el monitoreo puede "
                                         "estar interrumpido.",
        MessageKind.SERVICE_AVAILABLE: "El servicio AlertAigua ha sido restaurado y ahora está monitoreando "
                                       "tu sistema de agua normalmente.",
    },
    "ca": {
        MessageKind.SERVICE_UNAVAILABLE: "El servei AlertAigua està experimentant problemes amb la "
                                         "recol·lecció de dades. Tingues en compte que el monitoratge "
                                         "pot estar interromput.",
        MessageKind.SERVICE_AVAILABLE: "El servei AlertAigua ha estat restaurat i ara està monitoritzant "
                                       "el teu sistema d'aigua normalment.",
    },
}

_URL_TITLES = {"en": "Live sensor data", "es": "Datos del sensor", "ca": "Dades del sensor"}


def _language(language: str | None) -> str:
    return language if language in SUPPORTED_LANGUAGES else DEFAULT_LANGUAGE


def alarm_message(language: str | None, state: AlarmState, metric: Metric, value: float) -> Message:
    """Message for an alarm state a subscriber just entered"""
    lang = _language(language)
    kind = MessageKind.for_state(state)
    bodies = _NORMAL_BODY if state == AlarmState.NORMAL else _ALARM_BODY
    body = bodies[lang][metric].format(value=value, unit=METRIC_UNITS[metric])
    return Message(title=_TITLES[lang][kind], body=body, url_title=_URL_TITLES[lang])


def service_message(language: str | None, kind: MessageKind) -> Message:
    """Message for a global availability change"""
    lang = _language(language)
    if kind not in (MessageKind.SERVICE_UNAVAILABLE, MessageKind.SERVICE_AVAILABLE):
        raise ValueError(f"Not a service message kind: {kind}")
    return Message(title=_TITLES[lang][kind], body=_SERVICE_BODY[lang][kind])
