"""Downstream LLM stages: summary, topic, feedback, behaviors, embedding.

Each function makes independent calls to the hosted model. Callers in the
pipeline wrap them and substitute the fixed fallback values below, so none of
these stages can abort a run.
"""
import json
import re
import time
from typing import Any, Dict, Iterable, List, Optional

from flask import current_app

from ..errors import OpenAIError
from .openai_wrap import chat_completion, create_embedding

SENTIMENTS = ('positive', 'negative', 'neutral')
TOPIC_FALLBACK = 'Consultas generales'
TOPIC_DEFAULT = 'Consulta general'
TOPIC_CATEGORIES = (
    'Consulta general',
    'Soporte técnico',
    'Información de productos',
    'Reclamos',
    'Activación de servicios',
    'Facturación',
    'Seguimiento',
)
EMBEDDING_MAX_CHARS = 8000

FEEDBACK_FALLBACK = {
    'score': 50,
    'positive': ['Transcripción procesada exitosamente'],
    'negative': ['Error en el análisis detallado'],
    'opportunities': ['Revisar configuración de análisis'],
    'sentiment': 'neutral',
    'entities': [],
    'topics': [],
    'behaviors_analysis': [],
}
NO_CONTENT_FEEDBACK = {
    'score': 0,
    'positive': [],
    'negative': ['No hay contenido analizable en la grabación - transcripción insuficiente o inválida'],
    'opportunities': ['Verificar calidad del audio y contenido de la llamada'],
    'sentiment': 'neutral',
    'entities': [],
    'topics': [],
    'behaviors_analysis': [],
}

SUMMARY_PROMPT = """
Crea un resumen conciso de esta llamada de servicio al cliente.

INSTRUCCIONES CRÍTICAS:
- Usa ÚNICAMENTE la información que aparece en la transcripción
- NO inventes nombres, problemas, soluciones o detalles que no estén en el texto
- Si la información es limitada, menciona esta limitación
- Mantén el resumen factual y basado en evidencia

Incluye:
- Tema principal de la llamada (si se puede identificar)
- Participantes mencionados (solo si aparecen en la transcripción)
- Acciones tomadas (solo las que se mencionan explícitamente)
- Resultado (solo si se indica claramente)
"""

FEEDBACK_PROMPT = """
Analiza esta llamada de servicio al cliente y proporciona feedback detallado.

INSTRUCCIONES CRÍTICAS:
- Analiza ÚNICAMENTE el contenido de la transcripción real proporcionada
- NO inventes nombres, problemas, soluciones o detalles que no aparezcan en la transcripción
- Base tu análisis SOLO en lo que realmente se dice en la conversación
- Si la información es insuficiente, menciona esta limitación en tu análisis

Evalúa:
- Calidad del servicio al cliente
- Comunicación efectiva
- Resolución de problemas
- Profesionalismo
- Empatía y cortesía
"""

FEEDBACK_FORMAT = """
Responde en formato JSON con esta estructura exacta:
{
  "score": número del 0 al 100,
  "positive": ["punto positivo 1", "punto positivo 2"],
  "negative": ["punto negativo 1", "punto negativo 2"],
  "opportunities": ["oportunidad 1", "oportunidad 2"],
  "sentiment": "positive", "negative", o "neutral",
  "entities": ["entidad 1", "entidad 2"],
  "topics": ["tema 1", "tema 2"]
}"""

INVALID_MARKERS = ('no hay transcripción', 'transcripción no disponible', 'error en la transcripción')


def is_analyzable(transcript: Optional[str], require_speakers: bool = False) -> bool:
    if not transcript or len(transcript) <= 50:
        return False
    lower = transcript.lower()
    if any(m in lower for m in INVALID_MARKERS):
        return False
    if require_speakers:
        tagged = any(t in transcript for t in ('Asesor:', 'Cliente:', 'Agent:', 'Customer:'))
        return tagged or len(transcript.split(' ')) > 20
    return True


def generate_summary(transcript: str, custom_prompt: Optional[str] = None) -> str:
    if not is_analyzable(transcript):
        current_app.logger.info('Invalid or insufficient transcription for summary generation')
        return 'No hay contenido suficiente para generar un resumen - transcripción insuficiente o inválida'

    system = f"{custom_prompt or SUMMARY_PROMPT}\n\nResponde con un resumen en texto plano, sin inventar información adicional."
    user = (f"Crea un resumen basado ÚNICAMENTE en esta transcripción:\n\n{transcript}\n\n"
            "IMPORTANTE: No agregues información que no aparezca explícitamente en la transcripción.")
    summary = chat_completion(
        [{'role': 'system', 'content': system}, {'role': 'user', 'content': user}],
        temperature=0.1, max_tokens=500,
    )
    return summary or 'No se pudo generar resumen'


def summary_fallback(transcript: str) -> str:
    return f"Resumen automático: {(transcript or '')[:300]}..."


def detect_call_topic(transcript: str, summary: str) -> str:
    if not transcript or len(transcript) < 50:
        return 'Contenido insuficiente para determinar el tema'

    categories = '\n'.join(f'- {c}' for c in TOPIC_CATEGORIES)
    system = (
        "Identifica el tema principal de esta llamada basándote ÚNICAMENTE en el contenido proporcionado.\n\n"
        "INSTRUCCIONES:\n- Usa solo la información presente en la transcripción y resumen\n"
        "- NO inventes detalles adicionales\n- Responde con una categoría simple y directa\n\n"
        f"Categorías comunes:\n{categories}\n- Otro (especifica brevemente)\n\n"
        "Responde solo con el nombre de la categoría."
    )
    user = f"Transcripción: {transcript}\n\nResumen: {summary}\n\n¿Cuál es el tema principal de esta llamada?"
    try:
        topic = chat_completion(
            [{'role': 'system', 'content': system}, {'role': 'user', 'content': user}],
            temperature=0.0, max_tokens=50,
        )
    except OpenAIError:
        current_app.logger.exception('Error detecting topic')
        return TOPIC_DEFAULT
    return topic.strip().strip('"').strip() or TOPIC_DEFAULT


def _as_list(v) -> List[Any]:
    return v if isinstance(v, list) else []


def clamp_score(v) -> int:
    try:
        score = float(v or 0)
    except (TypeError, ValueError):
        score = 0
    return int(round(max(0, min(100, score))))


def normalize_feedback(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Clamp the score and coerce every list field, whatever the model returned."""
    raw = raw if isinstance(raw, dict) else {}
    sentiment = raw.get('sentiment')
    return {
        'score': clamp_score(raw.get('score')),
        'positive': _as_list(raw.get('positive')),
        'negative': _as_list(raw.get('negative')),
        'opportunities': _as_list(raw.get('opportunities')),
        'sentiment': sentiment if sentiment in SENTIMENTS else 'neutral',
        'entities': _as_list(raw.get('entities')),
        'topics': _as_list(raw.get('topics')),
        'behaviors_analysis': _as_list(raw.get('behaviors_analysis')),
    }


def parse_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Parse the model output; tolerate prose around a single JSON object."""
    if not text:
        return None
    try:
        data = json.loads(text)
    except ValueError:
        m = re.search(r"\{[\s\S]*\}", text)
        if not m:
            return None
        try:
            data = json.loads(m.group(0))
        except ValueError:
            return None
    return data if isinstance(data, dict) else None


def generate_feedback(transcript: str, summary: str, custom_prompt: Optional[str] = None,
                      behaviors: Iterable[Any] = ()) -> Dict[str, Any]:
    if not is_analyzable(transcript, require_speakers=True):
        current_app.logger.info('Invalid or insufficient transcription for feedback generation')
        return dict(NO_CONTENT_FEEDBACK)

    system = f"{custom_prompt or FEEDBACK_PROMPT}\n{FEEDBACK_FORMAT}"
    user = (f"Analiza esta transcripción REAL (no inventes información adicional):\n\n"
            f"TRANSCRIPCIÓN:\n{transcript}\n\nRESUMEN:\n{summary}\n\n"
            "Proporciona feedback basado ÚNICAMENTE en la información presente en estos textos.")
    content = chat_completion(
        [{'role': 'system', 'content': system}, {'role': 'user', 'content': user}],
        temperature=0.1, max_tokens=1000, json_mode=True,
    )
    data = parse_json_object(content)
    if data is None:
        current_app.logger.error('Error parsing feedback JSON: %s', (content or '')[:300])
        data = dict(FEEDBACK_FALLBACK)

    feedback = normalize_feedback(data)
    behaviors = list(behaviors or ())
    if behaviors:
        feedback['behaviors_analysis'] = analyze_behaviors(transcript, behaviors)
    return feedback


def _behavior_messages(behavior, transcript):
    system = (
        "Eres un experto en análisis de calidad de llamadas de servicio al cliente y ventas.\n\n"
        "INSTRUCCIONES CRÍTICAS Y OBLIGATORIAS:\n"
        "- Analiza ÚNICAMENTE el contenido de la transcripción real proporcionada\n"
        "- NO inventes, asumas o crees información que no esté explícitamente en la transcripción\n"
        "- Si la transcripción solo contiene saludos o información insuficiente, responde \"no cumple\"\n"
        f"- Evalúa SOLO este comportamiento específico: \"{behavior.name}\"\n"
        "- Cita EXACTAMENTE las partes de la conversación que uses como evidencia\n\n"
        f"Descripción del comportamiento: {behavior.description or 'No hay descripción adicional'}\n"
        f"Criterios de evaluación: {behavior.prompt}\n\n"
        "Responde ÚNICAMENTE en formato JSON válido:\n"
        "{\n  \"evaluation\": \"cumple\" o \"no cumple\",\n  \"comments\": \"Comentarios específicos\"\n}"
    )
    user = (f"Analiza si el comportamiento \"{behavior.name}\" se cumple en esta transcripción REAL:\n\n"
            f"TRANSCRIPCIÓN COMPLETA:\n{transcript}")
    return [{'role': 'system', 'content': system}, {'role': 'user', 'content': user}]


def analyze_behaviors(transcript: str, behaviors: Iterable[Any], pause: float = 0.1) -> List[Dict[str, str]]:
    """Evaluate each configured behavior; failures become a 'no cumple' entry."""
    behaviors = list(behaviors)
    out = []
    for i, behavior in enumerate(behaviors):
        try:
            content = chat_completion(_behavior_messages(behavior, transcript),
                                      temperature=0.0, max_tokens=300, json_mode=True)
            result = parse_json_object(content) or {
                'evaluation': 'no cumple',
                'comments': 'Error: La transcripción no contiene información suficiente para evaluar este comportamiento',
            }
        except OpenAIError as e:
            current_app.logger.warning('Error analyzing behavior %r: %s', behavior.name, e)
            result = {
                'evaluation': 'no cumple',
                'comments': f'Error: no se pudo analizar este comportamiento: {e}',
            }
        evaluation = result.get('evaluation')
        if evaluation not in ('cumple', 'no cumple'):
            evaluation = 'no cumple'
        comments = result.get('comments')
        if not comments or not isinstance(comments, str):
            comments = 'No se encontró evidencia suficiente en la transcripción para evaluar este comportamiento'
        out.append({'name': behavior.name, 'evaluation': evaluation, 'comments': comments})
        # space requests out to stay under rate limits
        if pause and i < len(behaviors) - 1:
            time.sleep(pause)
    return out


def prepare_content_for_embedding(title=None, agent_name=None, summary=None, topics=None,
                                  call_topic=None, entities=None, transcription=None) -> str:
    parts = []
    if title:
        parts.append(f"Título: {title}")
    if agent_name:
        parts.append(f"Agente: {agent_name}")
    if summary:
        parts.append(f"Resumen: {summary}")
    if isinstance(topics, list) and topics:
        parts.append(f"Temas: {', '.join(str(t) for t in topics)}")
    if call_topic:
        parts.append(f"Categoría: {call_topic}")
    if isinstance(entities, list) and entities:
        parts.append(f"Entidades: {', '.join(str(e) for e in entities)}")
    if transcription:
        # transcript last; it can be very long
        parts.append(f"Transcripción: {transcription[:2000]}")
    return '\n'.join(parts)


def generate_content_embedding(text: str) -> Optional[List[float]]:
    clean = re.sub(r'\s+', ' ', (text or '')[:EMBEDDING_MAX_CHARS]).strip()
    if len(clean) < 10:
        current_app.logger.warning('Text too short for embedding')
        return None
    try:
        embedding = create_embedding(clean)
    except OpenAIError:
        current_app.logger.exception('Error generating content embedding')
        return None
    current_app.logger.info('Content embedding generated: %s dimensions', len(embedding))
    return embedding or None
