"""64-bit feature id encoding: a group id prefix followed by a sub id."""

FEATURE_ID_BITS = 64

GROUP_BITS = 16
SUB_ID_BITS = FEATURE_ID_BITS - GROUP_BITS
MAX_GROUP_ID16 = (1 << GROUP_BITS) - 1

GROUP18_BITS = 18
SUB_ID18_BITS = FEATURE_ID_BITS - GROUP18_BITS
MAX_GROUP_ID18 = (1 << GROUP18_BITS) - 1


def _make(group_id: int, sub_id: int, group_bits: int) -> int:
    sub_bits = FEATURE_ID_BITS - group_bits
    if group_id < 0 or group_id >= (1 << group_bits):
        raise ValueError(f"Group id {group_id} does not fit in {group_bits} bits")
    if sub_id < 0 or sub_id >= (1 << sub_bits):
        raise ValueError(f"Sub id {sub_id} does not fit in {sub_bits} bits")
    return (group_id << sub_bits) | sub_id


def make_feature_id(group_id: int, sub_id: int) -> int:
    return _make(group_id, sub_id, GROUP_BITS)


def get_group_id(feature_id: int) -> int:
    return int(feature_id) >> SUB_ID_BITS


def make_feature_id18(group_id: int, sub_id: int) -> int:
    return _make(group_id, sub_id, GROUP18_BITS)


def get_group_id18(feature_id: int) -> int:
    return int(feature_id) >> SUB_ID18_BITS
