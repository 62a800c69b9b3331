"""Domain enumerations and state-transition rules."""

import enum


class UserRole(str, enum.Enum):
    EXPEDITEUR = "EXPEDITEUR"
    TRANSPORTEUR = "TRANSPORTEUR"
    ADMIN = "ADMIN"


class OrderStatus(str, enum.Enum):
    DEMANDE = "DEMANDE"
    DEVIS_ENVOYE = "DEVIS_ENVOYE"
    DEVIS_ACCEPTE = "DEVIS_ACCEPTE"
    DEVIS_REFUSE = "DEVIS_REFUSE"
    CONFIRME = "CONFIRME"
    EN_PREPARATION = "EN_PREPARATION"
    EN_TRANSIT = "EN_TRANSIT"
    LIVRE = "LIVRE"
    TERMINE = "TERMINE"
    ANNULE = "ANNULE"
    LITIGE = "LITIGE"
    REMBOURSE = "REMBOURSE"


class OrderAction(str, enum.Enum):
    SUBMIT_QUOTE = "SUBMIT_QUOTE"
    ACCEPT_QUOTE = "ACCEPT_QUOTE"
    START = "START"
    DELIVER = "DELIVER"
    FINALIZE = "FINALIZE"
    CANCEL = "CANCEL"


class QuoteStatus(str, enum.Enum):
    BROUILLON = "BROUILLON"
    ENVOYE = "ENVOYE"
    ACCEPTE = "ACCEPTE"
    REFUSE = "REFUSE"
    EXPIRE = "EXPIRE"
    MODIFIE = "MODIFIE"


class QuoteAction(str, enum.Enum):
    SEND = "SEND"
    ACCEPT = "ACCEPT"
    REJECT = "REJECT"
    EXPIRE = "EXPIRE"
    SUPERSEDE = "SUPERSEDE"
    REVISE = "REVISE"


ORDER_TERMINAL: frozenset[OrderStatus] = frozenset(
    {OrderStatus.TERMINE, OrderStatus.ANNULE, OrderStatus.REMBOURSE}
)

# Orders a carrier may still quote on
ORDER_QUOTABLE: frozenset[OrderStatus] = frozenset(
    {OrderStatus.DEMANDE, OrderStatus.DEVIS_ENVOYE}
)

# Orders shown in the carrier-facing marketplace search
ORDER_OPEN: frozenset[OrderStatus] = frozenset(
    {OrderStatus.DEMANDE, OrderStatus.DEVIS_ENVOYE, OrderStatus.DEVIS_ACCEPTE}
)

# State machine: (current status, action) -> next status.
# Any pair not listed here is an invalid transition.
ORDER_TRANSITIONS: dict[tuple[OrderStatus, OrderAction], OrderStatus] = {
    (OrderStatus.DEMANDE, OrderAction.SUBMIT_QUOTE): OrderStatus.DEVIS_ENVOYE,
    # passes through DEVIS_ACCEPTE inside the acceptance unit
    (OrderStatus.DEVIS_ENVOYE, OrderAction.ACCEPT_QUOTE): OrderStatus.CONFIRME,
    (OrderStatus.CONFIRME, OrderAction.START): OrderStatus.EN_TRANSIT,
    (OrderStatus.EN_TRANSIT, OrderAction.DELIVER): OrderStatus.LIVRE,
    (OrderStatus.LIVRE, OrderAction.FINALIZE): OrderStatus.TERMINE,
    **{
        (status, OrderAction.CANCEL): OrderStatus.ANNULE
        for status in OrderStatus
        if status not in ORDER_TERMINAL
    },
}


QUOTE_TERMINAL: frozenset[QuoteStatus] = frozenset(
    {QuoteStatus.ACCEPTE, QuoteStatus.REFUSE, QuoteStatus.EXPIRE}
)

# At most one active quote per (order, carrier)
QUOTE_ACTIVE: frozenset[QuoteStatus] = frozenset(
    {QuoteStatus.BROUILLON, QuoteStatus.ENVOYE}
)

QUOTE_TRANSITIONS: dict[tuple[QuoteStatus, QuoteAction], QuoteStatus] = {
    (QuoteStatus.BROUILLON, QuoteAction.SEND): QuoteStatus.ENVOYE,
    (QuoteStatus.ENVOYE, QuoteAction.ACCEPT): QuoteStatus.ACCEPTE,
    (QuoteStatus.ENVOYE, QuoteAction.REJECT): QuoteStatus.REFUSE,
    (QuoteStatus.ENVOYE, QuoteAction.EXPIRE): QuoteStatus.EXPIRE,
    (QuoteStatus.ENVOYE, QuoteAction.SUPERSEDE): QuoteStatus.REFUSE,
    (QuoteStatus.BROUILLON, QuoteAction.SUPERSEDE): QuoteStatus.REFUSE,
    (QuoteStatus.ENVOYE, QuoteAction.REVISE): QuoteStatus.MODIFIE,
}


def quote_sources(action: QuoteAction) -> frozenset[QuoteStatus]:
    """Statuses from which the table allows ``action``."""
    return frozenset(s for s, a in QUOTE_TRANSITIONS if a == action)


# Closed in bulk when a sibling is accepted or the order is cancelled
QUOTE_SUPERSEDABLE = quote_sources(QuoteAction.SUPERSEDE)
QUOTE_EXPIRABLE = quote_sources(QuoteAction.EXPIRE)


class VehicleType(str, enum.Enum):
    CAMION_3T = "CAMION_3T"
    CAMION_5T = "CAMION_5T"
    CAMION_10T = "CAMION_10T"
    CAMION_20T = "CAMION_20T"
    CAMION_35T = "CAMION_35T"
    REMORQUE = "REMORQUE"
    SEMI_REMORQUE = "SEMI_REMORQUE"
    FOURGON = "FOURGON"
    BENNE = "BENNE"
    CITERNE = "CITERNE"


class VehicleStatus(str, enum.Enum):
    DISPONIBLE = "DISPONIBLE"
    RESERVE = "RESERVE"
    EN_COURS = "EN_COURS"
    MAINTENANCE = "MAINTENANCE"
    HORS_SERVICE = "HORS_SERVICE"


class GoodsType(str, enum.Enum):
    PRODUITS_ALIMENTAIRES = "PRODUITS_ALIMENTAIRES"
    MATERIAUX_CONSTRUCTION = "MATERIAUX_CONSTRUCTION"
    EQUIPEMENTS = "EQUIPEMENTS"
    MOBILIER = "MOBILIER"
    TEXTILES = "TEXTILES"
    VEHICULES = "VEHICULES"
    BETAIL = "BETAIL"
    LIQUIDES = "LIQUIDES"
    PRODUITS_CHIMIQUES = "PRODUITS_CHIMIQUES"
    PRODUITS_DANGEREUX = "PRODUITS_DANGEREUX"
    AUTRE = "AUTRE"


class Priority(str, enum.Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class TrafficCondition(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


_GENERAL_CARGO = frozenset(VehicleType) - {VehicleType.CITERNE}

# Goods type -> vehicle types able to carry it
GOODS_VEHICLE_COMPATIBILITY: dict[GoodsType, frozenset[VehicleType]] = {
    GoodsType.LIQUIDES: frozenset({VehicleType.CITERNE}),
    GoodsType.PRODUITS_CHIMIQUES: frozenset(
        {VehicleType.CITERNE, VehicleType.CAMION_20T, VehicleType.SEMI_REMORQUE}
    ),
    GoodsType.PRODUITS_DANGEREUX: frozenset(
        {VehicleType.CITERNE, VehicleType.CAMION_20T,
         VehicleType.CAMION_35T, VehicleType.SEMI_REMORQUE}
    ),
    GoodsType.BETAIL: frozenset(
        {VehicleType.CAMION_10T, VehicleType.CAMION_20T,
         VehicleType.REMORQUE, VehicleType.SEMI_REMORQUE}
    ),
    GoodsType.VEHICULES: frozenset(
        {VehicleType.CAMION_20T, VehicleType.CAMION_35T,
         VehicleType.REMORQUE, VehicleType.SEMI_REMORQUE}
    ),
    GoodsType.MATERIAUX_CONSTRUCTION: _GENERAL_CARGO,
}


def compatible_vehicle_types(goods_type: GoodsType) -> frozenset[VehicleType]:
    return GOODS_VEHICLE_COMPATIBILITY.get(goods_type, _GENERAL_CARGO)
