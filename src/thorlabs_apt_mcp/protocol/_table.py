"""Message lookup tables generated from messages.csv.

Do not edit by hand. Regenerate with ``python -m
thorlabs_apt_mcp.protocol.compiler``.
"""

from types import MappingProxyType

VARIABLE = None

NAMES = MappingProxyType({
    0x0002: 'HW_DISCONNECT',
    0x0005: 'HW_REQ_INFO',
    0x0006: 'HW_GET_INFO',
    0x0011: 'HW_START_UPDATEMSGS',
    0x0012: 'HW_STOP_UPDATEMSGS',
    0x0080: 'HW_RESPONSE',
    0x0081: 'HW_RICHRESPONSE',
    0x0210: 'MOD_SET_CHANENABLESTATE',
    0x0211: 'MOD_REQ_CHANENABLESTATE',
    0x0212: 'MOD_GET_CHANENABLESTATE',
    0x0223: 'MOD_IDENTIFY',
    0x0413: 'MOT_SET_VELPARAMS',
    0x0414: 'MOT_REQ_VELPARAMS',
    0x0415: 'MOT_GET_VELPARAMS',
    0x0429: 'MOT_REQ_STATUSBITS',
    0x042A: 'MOT_GET_STATUSBITS',
    0x0443: 'MOT_MOVE_HOME',
    0x0444: 'MOT_MOVE_HOMED',
    0x0448: 'MOT_MOVE_RELATIVE',
    0x0450: 'MOT_SET_MOVEABSPARAMS',
    0x0451: 'MOT_REQ_MOVEABSPARAMS',
    0x0452: 'MOT_GET_MOVEABSPARAMS',
    0x0453: 'MOT_MOVE_ABSOLUTE',
    0x0464: 'MOT_MOVE_COMPLETED',
    0x0465: 'MOT_MOVE_STOP',
    0x0466: 'MOT_MOVE_STOPPED',
    0x0490: 'MOT_REQ_USTATUSUPDATE',
    0x0491: 'MOT_GET_USTATUSUPDATE',
    0x0492: 'MOT_ACK_USTATUSUPDATE',
})

LENGTHS = MappingProxyType({
    0x0002: 6,
    0x0005: 6,
    0x0006: 90,
    0x0011: 6,
    0x0012: 6,
    0x0080: 6,
    0x0081: 74,
    0x0210: 6,
    0x0211: 6,
    0x0212: 6,
    0x0223: 6,
    0x0413: 20,
    0x0414: 6,
    0x0415: 20,
    0x0429: 6,
    0x042A: 12,
    0x0443: 6,
    0x0444: 6,
    0x0448: VARIABLE,
    0x0450: 12,
    0x0451: 6,
    0x0452: 12,
    0x0453: VARIABLE,
    0x0464: 20,
    0x0465: 6,
    0x0466: 20,
    0x0490: 6,
    0x0491: 20,
    0x0492: 6,
})

CHANNELS = MappingProxyType({
    0x0002: 'HW_DISCONNECT',
    0x0005: 'HW_REQ_INFO',
    0x0006: 'hw_info',
    0x0011: 'HW_START_UPDATEMSGS',
    0x0012: 'HW_STOP_UPDATEMSGS',
    0x0080: 'hw_response',
    0x0081: 'hw_response',
    0x0210: 'MOD_SET_CHANENABLESTATE',
    0x0211: 'MOD_REQ_CHANENABLESTATE',
    0x0212: 'chan_enable_state',
    0x0223: 'MOD_IDENTIFY',
    0x0413: 'MOT_SET_VELPARAMS',
    0x0414: 'MOT_REQ_VELPARAMS',
    0x0415: 'vel_params',
    0x0429: 'MOT_REQ_STATUSBITS',
    0x042A: 'status_bits',
    0x0443: 'MOT_MOVE_HOME',
    0x0444: 'homed',
    0x0448: 'MOT_MOVE_RELATIVE',
    0x0450: 'MOT_SET_MOVEABSPARAMS',
    0x0451: 'MOT_REQ_MOVEABSPARAMS',
    0x0452: 'move_abs_params',
    0x0453: 'MOT_MOVE_ABSOLUTE',
    0x0464: 'move_completed',
    0x0465: 'MOT_MOVE_STOP',
    0x0466: 'move_stopped',
    0x0490: 'MOT_REQ_USTATUSUPDATE',
    0x0491: 'u_status_update',
    0x0492: 'MOT_ACK_USTATUSUPDATE',
})
