LINUX_TUNSETIFF = 0x400454ca
LINUX_TUNSETPERSIST = 0x400454cb
LINUX_TUNSETQUEUE = 0x400454d9

LINUX_IFF_TUN = 0x0001
LINUX_IFF_TAP = 0x0002
LINUX_IFF_MULTI_QUEUE = 0x0100
LINUX_IFF_ATTACH_QUEUE = 0x0200
LINUX_IFF_DETACH_QUEUE = 0x0400
LINUX_IFF_NO_PI = 0x1000
LINUX_IFF_ONE_QUEUE = 0x2000
LINUX_IFF_VNET_HDR = 0x4000
LINUX_IFF_TUN_EXCL = 0x8000

LINUX_IFNAMSIZ = 16
LINUX_IFREQ_FORMAT = '16sH22x' # struct ifreq: name + flags, padded to 40 bytes

TUN_NAME_ALLOWED_REGEX = r'^[a-zA-Z0-9._-]{0,15}$' # empty name lets the kernel pick tunN / tapN
MAC_ADDRESS_REGEX = r'^([0-9a-fA-F]{2}:){5}[0-9a-fA-F]{2}$'

PACKET_INFO_HEADER_SIZE = 4 # struct tun_pi: flags + proto
VLAN_ETH_HEADER_SIZE = 18 # ethernet header with one 802.1Q tag
MAX_DATAGRAM_SIZE = 65535

DEFAULT_DEVICE_PATH = '/dev/net/tun'
DEFAULT_NETMASK = '255.255.255.0'
DEFAULT_MTU = 1500
DEFAULT_LISTEN_ADDRESS = '0.0.0.0'
DEFAULT_LISTEN_PORT = 12000
DEFAULT_LOG_LEVEL = 'INFO'

MODE_TUN = 'tun'
MODE_TAP = 'tap'

CONFIG_KNOWN_VALUES = (
    "MODE",
    "TUN_ADDRESS",
    "TUN_DSTADDR",
    "TUN_NETMASK",
    "TUN_HWADDR",
    "TUN_DEVICE_NAME",
    "TUN_DEVICE_PATH",
    "PACKET_INFO",
    "MTU",
    "LISTEN_ADDRESS",
    "LISTEN_PORT",
    "PEER_ADDRESS",
    "PEER_PORT",
    "SOCKET_BUFFER_SIZE",
    "LOG_LEVEL",
    "NICE_LEVEL",
    "RUN_COMMAND_AFTER_TUN_READY",
    "RUN_COMMAND_ON_EXIT",
)
CONFIG_COMMENTS_PREFIXES = "_comment_"
