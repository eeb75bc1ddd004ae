"""Domain enumerations and state-transition rules."""

import enum


class UserType(str, enum.Enum):
    ADMIN = "ADMIN"
    TRANSPORTER = "TRANSPORTER"
    TRUCKER = "TRUCKER"


class MaterialType(str, enum.Enum):
    IRON_SHEET = "IRON SHEET"
    INDUSTRIAL_EQUIPMENT = "INDUSTRIAL EQUIPMENT"
    CEMENT = "CEMENT"
    COAL = "COAL"
    STEEL = "STEEL"
    IRON_BARS = "IRON BARS"
    PIPES = "PIPES"
    METALS = "METALS"
    SCRAPS = "SCRAPS"
    OIL = "OIL"
    RUBBER = "RUBBER"
    WOOD = "WOOD"
    VEHICLE_PARTS = "VEHICLE PARTS"
    LEATHER = "LEATHER"
    WHEAT = "WHEAT"
    VEGETABLES = "VEGETABLES"
    COTTON = "COTTON"
    TEXTILES = "TEXTILES"
    RICE = "RICE"
    SPICES = "SPICES"
    PACKAGED_FOOD = "PACKAGED FOOD"
    MEDICINES = "MEDICINES"
    OTHERS = "OTHERS"


class VehicleBodyType(str, enum.Enum):
    OPEN_BODY = "OPEN_BODY"
    CLOSED_BODY = "CLOSED_BODY"


class VehicleType(str, enum.Enum):
    TRAILER = "TRAILER"
    TRUCK = "TRUCK"
    HYVA = "HYVA"


class TruckBodyType(str, enum.Enum):
    OPEN_FULL_BODY = "OPEN_FULL_BODY"
    OPEN_HALF_BODY = "OPEN_HALF_BODY"
    FULL_CLOSED_BODY = "FULL_CLOSED_BODY"


class Urgency(str, enum.Enum):
    IMMEDIATE = "IMMEDIATE"
    SCHEDULED = "SCHEDULED"


class RCStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


# ── Bids ──────────────────────────────────────────────────────────────


class BidType(str, enum.Enum):
    LOAD_BID = "LOAD_BID"
    TRUCK_REQUEST = "TRUCK_REQUEST"


class ListingKind(str, enum.Enum):
    LOAD = "LOAD"
    TRUCK = "TRUCK"


# Which listing a bid lands on (and whose owner must answer it).
# The initiator always owns the other one.
BID_TARGETS: dict[BidType, ListingKind] = {
    BidType.LOAD_BID: ListingKind.TRUCK,
    BidType.TRUCK_REQUEST: ListingKind.LOAD,
}


class BidStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


# State machine: maps current status -> set of valid next statuses
BID_TRANSITIONS: dict[BidStatus, set[BidStatus]] = {
    BidStatus.PENDING: {BidStatus.ACCEPTED, BidStatus.REJECTED},
    BidStatus.ACCEPTED: set(),
    BidStatus.REJECTED: set(),
}


class RejectionReason(str, enum.Enum):
    PRICE_TOO_LOW = "PRICE_TOO_LOW"
    VEHICLE_UNSUITABLE = "VEHICLE_UNSUITABLE"
    SCHEDULE_CONFLICT = "SCHEDULE_CONFLICT"
    OTHER_BID_ACCEPTED = "OTHER_BID_ACCEPTED"
    OTHER = "OTHER"


# ── Side effects ──────────────────────────────────────────────────────


class LedgerReason(str, enum.Enum):
    BID_ACCEPTED = "BID_ACCEPTED"
    BID_REJECTED = "BID_REJECTED"


class MessageType(str, enum.Enum):
    TEXT = "TEXT"
    SYSTEM = "SYSTEM"
    BID_ACCEPTED = "BID_ACCEPTED"


class OutboxKind(str, enum.Enum):
    SETTLE_REWARD = "SETTLE_REWARD"
    BOOTSTRAP_CHAT = "BOOTSTRAP_CHAT"
    NOTIFY_BID_PLACED = "NOTIFY_BID_PLACED"
    NOTIFY_BID_ACCEPTED = "NOTIFY_BID_ACCEPTED"
    NOTIFY_BID_STATUS = "NOTIFY_BID_STATUS"


class OutboxStatus(str, enum.Enum):
    PENDING = "PENDING"
    DONE = "DONE"
    FAILED = "FAILED"


# ── Geo search ────────────────────────────────────────────────────────


class NearbyKind(str, enum.Enum):
    LOAD_SOURCE = "LOAD_SOURCE"
    LOAD_DESTINATION = "LOAD_DESTINATION"
    TRUCK = "TRUCK"


class MatchType(str, enum.Enum):
    BOTH = "BOTH"
    SOURCE = "SOURCE"
    DESTINATION = "DESTINATION"


# Lower value sorts first.
MATCH_PRIORITY: dict[MatchType, int] = {
    MatchType.BOTH: 0,
    MatchType.SOURCE: 1,
    MatchType.DESTINATION: 2,
}
