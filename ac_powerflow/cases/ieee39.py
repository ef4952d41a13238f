"""
IEEE 39-bus New England test system.

Branch, load and generator data from the MATPOWER ``case39`` profile,
converted to physical units at 345 kV, 100 MVA, 60 Hz. Bus ids are the IEEE
bus numbers minus one. Bus 31 (id 30) carries the slack generator.
"""

import math

from ..config import PowerFlowConfig
from ..core.network import Network

BASE_MVA = 100.0
F_HZ = 60.0
VN_KV = 345.0

# (from, to, r, x, b) in p.u. on 100 MVA
LINES = [
    (1, 2, 0.0035, 0.0411, 0.6987),
    (1, 39, 0.0010, 0.0250, 0.7500),
    (2, 3, 0.0013, 0.0151, 0.2572),
    (2, 25, 0.0070, 0.0086, 0.1460),
    (3, 4, 0.0013, 0.0213, 0.2214),
    (3, 18, 0.0011, 0.0133, 0.2138),
    (4, 5, 0.0008, 0.0128, 0.1342),
    (4, 14, 0.0008, 0.0129, 0.1382),
    (5, 6, 0.0002, 0.0026, 0.0434),
    (5, 8, 0.0008, 0.0112, 0.1476),
    (6, 7, 0.0006, 0.0092, 0.1130),
    (6, 11, 0.0007, 0.0082, 0.1389),
    (7, 8, 0.0004, 0.0046, 0.0780),
    (8, 9, 0.0023, 0.0363, 0.3804),
    (9, 39, 0.0010, 0.0250, 1.2000),
    (10, 11, 0.0004, 0.0043, 0.0729),
    (10, 13, 0.0004, 0.0043, 0.0729),
    (13, 14, 0.0009, 0.0101, 0.1723),
    (14, 15, 0.0018, 0.0217, 0.3660),
    (15, 16, 0.0009, 0.0094, 0.1710),
    (16, 17, 0.0007, 0.0089, 0.1342),
    (16, 19, 0.0016, 0.0195, 0.3040),
    (16, 21, 0.0008, 0.0135, 0.2548),
    (16, 24, 0.0003, 0.0059, 0.0680),
    (17, 18, 0.0007, 0.0082, 0.1319),
    (17, 27, 0.0013, 0.0173, 0.3216),
    (21, 22, 0.0008, 0.0140, 0.2565),
    (22, 23, 0.0006, 0.0096, 0.1846),
    (23, 24, 0.0022, 0.0350, 0.3610),
    (25, 26, 0.0032, 0.0323, 0.5130),
    (26, 27, 0.0014, 0.0147, 0.2396),
    (26, 28, 0.0043, 0.0474, 0.7802),
    (26, 29, 0.0057, 0.0625, 1.0290),
    (28, 29, 0.0014, 0.0151, 0.2490),
]

# (hv, lv, r, x, ratio) in p.u., tap on the hv (from) side
TRANSFORMERS = [
    (12, 11, 0.0016, 0.0435, 1.006),
    (12, 13, 0.0016, 0.0435, 1.006),
    (6, 31, 0.0000, 0.0250, 1.070),
    (10, 32, 0.0000, 0.0200, 1.070),
    (19, 33, 0.0007, 0.0142, 1.070),
    (20, 34, 0.0009, 0.0180, 1.009),
    (22, 35, 0.0000, 0.0143, 1.025),
    (23, 36, 0.0005, 0.0272, 1.000),
    (25, 37, 0.0006, 0.0232, 1.025),
    (2, 30, 0.0000, 0.0181, 1.025),
    (29, 38, 0.0008, 0.0156, 1.025),
    (19, 20, 0.0007, 0.0138, 1.060),
]

# bus: (p_mw, q_mvar)
LOADS = {
    3: (322.0, 2.4),
    4: (500.0, 184.0),
    7: (233.8, 84.0),
    8: (522.0, 176.0),
    12: (7.5, 88.0),
    15: (320.0, 153.0),
    16: (329.0, 32.3),
    18: (158.0, 30.0),
    20: (628.0, 103.0),
    21: (274.0, 115.0),
    23: (247.5, 84.6),
    24: (308.6, -92.0),
    25: (224.0, 47.2),
    26: (139.0, 17.0),
    27: (281.0, 75.5),
    28: (206.0, 27.6),
    29: (283.5, 26.9),
    31: (9.2, 4.6),
    39: (1104.0, 250.0),
}

# bus: (p_mw, vm_pu, min_q_mvar, max_q_mvar)
GENERATORS = {
    30: (250.0, 1.035, 140.0, 400.0),
    31: (0.0, 0.995, -100.0, 300.0),
    32: (650.0, 0.995, 150.0, 300.0),
    33: (632.0, 0.985, 0.0, 250.0),
    34: (508.0, 1.0123, 0.0, 167.0),
    35: (650.0, 1.035, -100.0, 300.0),
    36: (560.0, 1.04, 0.0, 240.0),
    37: (540.0, 1.01, 0.0, 250.0),
    38: (830.0, 1.015, -150.0, 300.0),
    39: (1000.0, 1.02, -100.0, 300.0),
}

SLACK_BUS = 31


def case39(config: PowerFlowConfig | None = None, verbose: bool = False) -> Network:
    """
    Build the IEEE 39-bus network.

    Args:
        config: Solver settings for the returned network
        verbose: Print a network summary on the first solve

    Returns:
        Network with 39 buses, 34 lines, 12 transformers, 19 loads and
        10 generators
    """
    net = Network(base_mva=BASE_MVA, f_hz=F_HZ, config=config, verbose=verbose)
    z_base = VN_KV ** 2 / BASE_MVA

    for i in range(1, 40):
        net.add_bus(VN_KV, name=f"Bus {i}", min_vm_pu=0.94, max_vm_pu=1.06)

    for f, t, r, x, b in LINES:
        net.add_line(
            f - 1, t - 1, length_km=1.0,
            r_ohm_per_km=r * z_base,
            x_ohm_per_km=x * z_base,
            c_nf_per_km=b / (z_base * 2 * math.pi * F_HZ) * 1e9,
            name=f"Line {f}-{t}",
        )

    for hv, lv, r, x, ratio in TRANSFORMERS:
        net.add_transformer(
            hv - 1, lv - 1, sn_mva=BASE_MVA, vn_hv_kv=VN_KV, vn_lv_kv=VN_KV,
            vk_percent=100 * math.hypot(r, x), vkr_percent=100 * r,
            tap_pos=1, tap_neutral=0, tap_step_percent=(ratio - 1) * 100,
            name=f"Trafo {hv}-{lv}",
        )

    for bus, (p, q) in LOADS.items():
        net.add_load(bus - 1, p, q, name=f"Load {bus}")

    for bus, (p, vm, q_min, q_max) in GENERATORS.items():
        net.add_generator(
            bus - 1, p, vm_pu=vm, min_q_mvar=q_min, max_q_mvar=q_max,
            slack=bus == SLACK_BUS, name=f"Gen {bus}",
        )
    return net
