"""Plantillas de correo por tipo de evento.

Las plantillas usan marcadores ``{nombre}``; los valores ausentes se
reemplazan por una cadena vacía para que un dato faltante nunca impida el
envío del resto del mensaje.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Mapping, Optional, Tuple

from core.config import NOTIFICATION_SENDER
from services.notification_service import EventKind, MessageContent

__all__ = ["DEFAULT_TEMPLATES", "DefaultTemplateRenderer"]


DEFAULT_TEMPLATES: Mapping[EventKind, Tuple[str, str]] = {
    EventKind.PRACTICA_CREADA: (
        "Completa tu Acta 1 de Supervisión de Práctica",
        "Hola {destinatario}:\n\n"
        "Se registró tu práctica {tipo_practica} entre el {fecha_inicio} y el {fecha_termino}. "
        "Tienes {plazo_acta_1} días para completar el Acta 1.",
    ),
    EventKind.ACTA1_PENDIENTE_REVISION: (
        "Acta 1 pendiente de revisión",
        "Hola {destinatario}:\n\n"
        "El alumno {alumno} completó el Acta 1 de su práctica {tipo_practica}. "
        "Revisa la información y acepta o rechaza la supervisión.",
    ),
    EventKind.PRACTICA_EN_CURSO: (
        "Práctica en curso",
        "Hola {destinatario}:\n\n"
        "La práctica de {alumno} fue aceptada y se encuentra en curso hasta el {fecha_termino}.",
    ),
    EventKind.PRACTICA_FINALIZADA: (
        "Práctica finalizada: evaluaciones pendientes",
        "Hola {destinatario}:\n\n"
        "La práctica de {alumno} finalizó. Quedan pendientes la evaluación del informe "
        "y la evaluación del empleador.",
    ),
    EventKind.PRACTICA_CERRADA: (
        "Acta final disponible",
        "Hola {destinatario}:\n\n"
        "La práctica de {alumno} fue cerrada con nota final {nota_ponderada}.",
    ),
    EventKind.RECORDATORIO: (
        "Recordatorio de práctica",
        "Hola {destinatario}:\n\n{mensaje}",
    ),
    EventKind.ALERTA_MANUAL: (
        "{asunto}",
        "Hola {destinatario}:\n\n{mensaje}\n\nEnviado por {enviado_por}.",
    ),
    EventKind.CREDENCIALES: (
        "Credenciales de acceso al Sistema de Prácticas",
        "Hola {destinatario}:\n\n"
        "Tu usuario es {usuario}. Tu contraseña inicial es {password}. "
        "Te recomendamos cambiarla al ingresar por primera vez.",
    ),
}


class _BlankDefault(dict):
    def __missing__(self, key: str) -> str:
        return ""


def _format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.strftime("%d-%m-%Y %H:%M")
    if isinstance(value, date):
        return value.strftime("%d-%m-%Y")
    return str(value)


class DefaultTemplateRenderer:
    """Renderer con asunto y cuerpo en texto plano para cada :class:`EventKind`."""

    def __init__(
        self,
        templates: Optional[Mapping[EventKind, Tuple[str, str]]] = None,
        *,
        sender: str = NOTIFICATION_SENDER,
    ) -> None:
        self.templates: Dict[EventKind, Tuple[str, str]] = dict(DEFAULT_TEMPLATES)
        if templates:
            self.templates.update(templates)
        self.sender = sender

    def render(self, kind: EventKind, data: Mapping[str, Any]) -> MessageContent:
        try:
            subject_template, body_template = self.templates[kind]
        except KeyError:
            raise ValueError(f"No hay plantilla para el evento {kind.value}") from None
        values = _BlankDefault({key: _format_value(value) for key, value in data.items()})
        return MessageContent(
            subject=subject_template.format_map(values),
            body=body_template.format_map(values),
            sender=self.sender,
        )
