from __future__ import annotations

import random
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from models import Card

BOARD_SIZE = 16

_DECK: Sequence[Tuple[str, str]] = (
    ("El Gallo", "El que le cantó a San Pedro no le volverá a cantar"),
    ("El Diablito", "Pórtate bien cuatito, si no te lleva el coloradito"),
    ("La Dama", "Puliendo el paso, por toda la calle real"),
    ("El Catrín", "Don Ferruco en la alameda, su bastón quería tirar"),
    ("El Paraguas", "Para el sol y para el aguacero"),
    ("La Sirena", "Con los cantos de sirena, no te vayas a marear"),
    ("La Escalera", "Súbeme paso a pasito, no quieras pegar brinquitos"),
    ("La Botella", "La herramienta del borracho"),
    ("El Barril", "Tanto bebió el albañil, que quedó como barril"),
    ("El Árbol", "El que a buen árbol se arrima, buena sombra le cobija"),
    ("El Melón", "Me lo das o me lo quitas"),
    ("El Valiente", "Por qué le corres cobarde, trayendo tan buen puñal"),
    ("El Gorrito", "Ponle su gorrito al nene, no se nos vaya a resfriar"),
    ("La Muerte", "La muerte siriquisiaca"),
    ("La Pera", "El que espera, desespera"),
    ("La Bandera", "Verde, blanco y colorado, la bandera del soldado"),
    ("El Bandolón", "Tocando su bandolón, está el mariachi Simón"),
    ("El Violoncello", "Creciendo se fue hasta el cielo, y como no fue violín, tuvo que ser violoncello"),
    ("La Garza", "Al otro lado del río tengo mi banco de arena"),
    ("El Pájaro", "Tú me traes a puros brincos, como pájaro en la rama"),
    ("La Mano", "La mano de un criminal"),
    ("La Bota", "Una bota igual que la otra"),
    ("La Luna", "El farol de los enamorados"),
    ("El Cotorro", "Cotorro, cotorro, saca la pata, y empiézame a platicar"),
    ("El Borracho", "A qué borracho tan necio, ya no lo puedo aguantar"),
    ("El Negrito", "El que se comió el azúcar"),
    ("El Corazón", "No me extrañes corazón, que regreso en el camión"),
    ("La Sandía", "La barriga que Juan quería"),
    ("El Tambor", "No te arrugues, cuero viejo, que te quiero pa' tambor"),
    ("El Camarón", "Camarón que se duerme, se lo lleva la corriente"),
    ("Las Jaras", "Las jaras del indio Adán, donde pegan, dan"),
    ("El Músico", "El músico trompas de hule, ya no me quiere tocar"),
    ("La Araña", "Atarántamela a palos, no me la dejes llegar"),
    ("El Soldado", "Uno, dos y tres, el soldado p'al cuartel"),
    ("La Estrella", "La guía de los marineros"),
    ("El Cazo", "El caso que te hago es poco"),
    ("El Mundo", "Este mundo es una bola, y nosotros un bolón"),
    ("El Apache", "¡Ah, Chihuahua! Cuánto apache con pantalón y huarache"),
    ("El Nopal", "Al nopal lo van a ver, nomás cuando tiene tunas"),
    ("El Alacrán", "El que con la cola pica, le dan una paliza"),
    ("La Rosa", "Rosita, Rosaura, ven que te quiero ahora"),
    ("La Calavera", "Al pasar por el panteón, me encontré un calaverón"),
    ("La Campana", "Tú con la campana y yo con tu hermana"),
    ("El Cantarito", "Tanto va el cántaro al agua, que se quiebra y te moja las enaguas"),
    ("El Venado", "Saltando va buscando, pero no ve nada el venado"),
    ("El Sol", "La cobija de los pobres"),
    ("La Corona", "El sombrero de los reyes"),
    ("La Chalupa", "Rema que rema Lupita, sentada en su chalupita"),
    ("El Pino", "Fresco y oloroso, en todo tiempo hermoso"),
    ("El Pescado", "El que por la boca muere, aunque mudo fuera"),
    ("La Palma", "Palmero, sube a la palma y bájame un coco real"),
    ("La Maceta", "El que nace pa' maceta, no sale del corredor"),
    ("El Arpa", "Arpa vieja de mi suegra, ya no sirves pa' tocar"),
    ("La Rana", "Al ver a la verde rana, qué susto te vas a dar"),
)


def _image_ref(card_id: int) -> str:
    return f"/cartas/{card_id:02d}.jpg"


def _make_catalog() -> List[Card]:
    return [
        Card(id=idx, name=name, imageRef=_image_ref(idx), description=description)
        for idx, (name, description) in enumerate(_DECK, start=1)
    ]


CARDS: List[Card] = _make_catalog()
CARDS_BY_ID: Dict[int, Card] = {card.id: card for card in CARDS}
CARD_IDS: List[int] = [card.id for card in CARDS]


def get_card(card_id: int) -> Optional[Card]:
    return CARDS_BY_ID.get(card_id)


def shuffled_deck(rng: Optional[random.Random] = None) -> List[int]:
    """Return every card id exactly once, in uniformly random order."""
    source = rng or random
    deck = list(CARD_IDS)
    source.shuffle(deck)
    return deck


def generate_board(rng: Optional[random.Random] = None) -> List[Card]:
    """Sample a 4x4 board (row-major) of distinct cards."""
    source = rng or random
    return list(source.sample(CARDS, BOARD_SIZE))


def board_from_payload(cards: Optional[Iterable[Any]]) -> Optional[List[Card]]:
    """Map a client-supplied board onto catalog cards.

    Accepts card dicts, ``Card`` objects or bare ids. Returns ``None`` unless
    the payload is exactly 16 distinct known cards.
    """
    if cards is None:
        return None
    board: List[Card] = []
    try:
        for item in cards:
            if isinstance(item, Card):
                card_id = item.id
            elif isinstance(item, dict):
                card_id = int(item.get("id"))
            else:
                card_id = int(item)
            card = CARDS_BY_ID.get(card_id)
            if card is None:
                return None
            board.append(card)
    except (TypeError, ValueError):
        return None
    if len(board) != BOARD_SIZE or len({card.id for card in board}) != BOARD_SIZE:
        return None
    return board
