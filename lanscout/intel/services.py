"""Static port-to-service knowledge base with fixed lookup precedence.

Lookups consult, in order and stopping at the first hit:

1. ``HOME_AUTOMATION_PORTS`` - HomeKit/Apple/IoT specific meanings,
2. ``WELL_KNOWN_PORTS`` - generic IANA style assignments,
3. the coarse label the port scanner attached, if any.
"""

from __future__ import annotations

from dataclasses import dataclass

UNKNOWN_LABEL = "Unknown"


@dataclass(frozen=True, slots=True)
class ServiceInfo:
    name: str
    description: str
    category: str
    protocol: str = "tcp"
    source: str = "well-known"


def _home(name: str, description: str, category: str, protocol: str = "tcp") -> ServiceInfo:
    return ServiceInfo(name=name, description=description, category=category, protocol=protocol, source="home-automation")


def _known(name: str, description: str, category: str, protocol: str = "tcp") -> ServiceInfo:
    return ServiceInfo(name=name, description=description, category=category, protocol=protocol, source="well-known")


HOME_AUTOMATION_PORTS: dict[int, ServiceInfo] = {
    5000: _home("AirPlay Audio", "Apple AirPlay audio stream (HomePod, Apple TV)", "homekit"),
    7000: _home("AirPlay Control", "Apple AirPlay control channel (HomePod, Apple TV)", "homekit"),
    3689: _home("DAAP", "Digital Audio Access Protocol (iTunes/Music sharing)", "homekit"),
    49152: _home("HomeKit HAP", "HomeKit Accessory Protocol", "homekit"),
    62078: _home("Apple TV Remote", "Apple TV remote protocol / lockdown service", "homekit"),
    5353: _home("mDNS/Bonjour", "Multicast DNS used for device discovery", "discovery", "udp"),
    8080: _home("HomeKit Bridge", "HomeKit bridge service (Hue and similar)", "homekit"),
    548: _home("AFP", "Apple Filing Protocol (Time Machine, file sharing)", "file-sharing"),
    631: _home("IPP", "Internet Printing Protocol (AirPrint)", "printing"),
    5009: _home("AirPort Admin", "AirPort base station management", "network"),
    5223: _home("iCloud Push", "Apple Push Notification Service", "apple"),
    3283: _home("Apple Remote Desktop", "ARD management", "remote"),
    1883: _home("MQTT", "Message Queue Telemetry Transport (IoT)", "iot"),
    8883: _home("MQTT/TLS", "MQTT over TLS", "iot"),
    5683: _home("CoAP", "Constrained Application Protocol (IoT)", "iot", "udp"),
    1900: _home("UPnP", "Universal Plug and Play / SSDP", "discovery", "udp"),
    8123: _home("Home Assistant", "Home Assistant web interface", "iot"),
    8443: _home("UniFi Controller", "UniFi controller / HTTPS management", "network"),
    32400: _home("Plex", "Plex Media Server", "media"),
    8096: _home("Jellyfin", "Jellyfin media server", "media"),
}

WELL_KNOWN_PORTS: dict[int, ServiceInfo] = {
    7: _known("Echo", "Echo protocol", "legacy"),
    9: _known("Discard", "Discard protocol", "legacy"),
    13: _known("Daytime", "Daytime protocol", "legacy"),
    19: _known("CHARGEN", "Character generator protocol", "legacy"),
    20: _known("FTP-DATA", "File Transfer Protocol (data)", "file-transfer"),
    21: _known("FTP", "File Transfer Protocol (control)", "file-transfer"),
    22: _known("SSH", "Secure Shell", "remote"),
    23: _known("Telnet", "Telnet protocol", "remote"),
    25: _known("SMTP", "Simple Mail Transfer Protocol", "mail"),
    37: _known("TIME", "Time protocol", "legacy"),
    43: _known("WHOIS", "WHOIS protocol", "network"),
    53: _known("DNS", "Domain Name System", "network"),
    67: _known("DHCP-SERVER", "Dynamic Host Configuration Protocol (server)", "network", "udp"),
    68: _known("DHCP-CLIENT", "Dynamic Host Configuration Protocol (client)", "network", "udp"),
    69: _known("TFTP", "Trivial File Transfer Protocol", "file-transfer", "udp"),
    79: _known("Finger", "Finger protocol", "legacy"),
    80: _known("HTTP", "Hypertext Transfer Protocol", "web"),
    88: _known("Kerberos", "Kerberos authentication", "directory"),
    110: _known("POP3", "Post Office Protocol v3", "mail"),
    111: _known("RPCbind", "ONC RPC port mapper", "rpc"),
    113: _known("Ident", "Identification protocol", "legacy"),
    119: _known("NNTP", "Network News Transfer Protocol", "legacy"),
    123: _known("NTP", "Network Time Protocol", "network", "udp"),
    135: _known("MS-RPC", "Microsoft RPC endpoint mapper", "rpc"),
    137: _known("NetBIOS-NS", "NetBIOS name service", "file-sharing"),
    138: _known("NetBIOS-DGM", "NetBIOS datagram service", "file-sharing"),
    139: _known("NetBIOS-SSN", "NetBIOS session service", "file-sharing"),
    143: _known("IMAP", "Internet Message Access Protocol", "mail"),
    161: _known("SNMP", "Simple Network Management Protocol", "management", "udp"),
    162: _known("SNMP-TRAP", "SNMP trap receiver", "management", "udp"),
    179: _known("BGP", "Border Gateway Protocol", "network"),
    389: _known("LDAP", "Lightweight Directory Access Protocol", "directory"),
    443: _known("HTTPS", "HTTP over TLS", "web"),
    445: _known("SMB", "Server Message Block over TCP", "file-sharing"),
    465: _known("SMTPS", "SMTP over TLS", "mail"),
    500: _known("ISAKMP", "IKE / IPsec key management", "vpn", "udp"),
    514: _known("Syslog", "System logging protocol", "management", "udp"),
    515: _known("LPD", "Line Printer Daemon", "printing"),
    554: _known("RTSP", "Real Time Streaming Protocol", "media"),
    587: _known("SMTP-SUBMISSION", "SMTP message submission", "mail"),
    636: _known("LDAPS", "LDAP over TLS", "directory"),
    873: _known("rsync", "rsync file synchronization", "file-transfer"),
    990: _known("FTPS", "FTP over TLS (control)", "file-transfer"),
    993: _known("IMAPS", "IMAP over TLS", "mail"),
    995: _known("POP3S", "POP3 over TLS", "mail"),
    1080: _known("SOCKS", "SOCKS proxy", "proxy"),
    1194: _known("OpenVPN", "OpenVPN", "vpn"),
    1433: _known("MSSQL", "Microsoft SQL Server", "database"),
    1434: _known("MSSQL-Browser", "Microsoft SQL Server browser", "database"),
    1521: _known("Oracle", "Oracle database listener", "database"),
    1723: _known("PPTP", "Point-to-Point Tunneling Protocol", "vpn"),
    2049: _known("NFS", "Network File System", "file-sharing"),
    2375: _known("Docker", "Docker API (plain text)", "container"),
    2376: _known("Docker-TLS", "Docker API over TLS", "container"),
    3306: _known("MySQL", "MySQL database", "database"),
    3389: _known("RDP", "Remote Desktop Protocol", "remote"),
    3690: _known("SVN", "Subversion", "development"),
    5432: _known("PostgreSQL", "PostgreSQL database", "database"),
    5800: _known("VNC-HTTP", "VNC over HTTP", "remote"),
    5900: _known("VNC", "Virtual Network Computing", "remote"),
    5901: _known("VNC-1", "VNC display :1", "remote"),
    5902: _known("VNC-2", "VNC display :2", "remote"),
    5938: _known("TeamViewer", "TeamViewer remote control", "remote"),
    5984: _known("CouchDB", "CouchDB HTTP API", "database"),
    5985: _known("WinRM", "Windows Remote Management (HTTP)", "remote"),
    5986: _known("WinRM-TLS", "Windows Remote Management (HTTPS)", "remote"),
    6379: _known("Redis", "Redis key-value store", "database"),
    6667: _known("IRC", "Internet Relay Chat", "chat"),
    7001: _known("Cassandra", "Cassandra inter-node (TLS)", "database"),
    8000: _known("HTTP-Alt", "Alternate HTTP", "web"),
    8086: _known("InfluxDB", "InfluxDB HTTP API", "database"),
    8888: _known("HTTP-Alt", "Alternate HTTP", "web"),
    9042: _known("Cassandra", "Cassandra native protocol", "database"),
    9100: _known("JetDirect", "Raw printing (JetDirect)", "printing"),
    9200: _known("Elasticsearch", "Elasticsearch HTTP API", "database"),
    9300: _known("Elasticsearch-Transport", "Elasticsearch inter-node transport", "database"),
    11211: _known("Memcached", "Memcached", "database"),
    27017: _known("MongoDB", "MongoDB database", "database"),
    27018: _known("MongoDB-Shard", "MongoDB shard server", "database"),
    27019: _known("MongoDB-Config", "MongoDB config server", "database"),
}


def lookup_service(port: int, coarse_label: str | None = None) -> ServiceInfo | None:
    """Resolve ``port`` through the tables in precedence order."""
    info = HOME_AUTOMATION_PORTS.get(port)
    if info is not None:
        return info
    info = WELL_KNOWN_PORTS.get(port)
    if info is not None:
        return info
    if coarse_label and coarse_label != UNKNOWN_LABEL:
        return ServiceInfo(
            name=coarse_label,
            description=f"{coarse_label} (inferred from port number)",
            category="unknown",
            source="scanner",
        )
    return None


def label_for_port(port: int, coarse_label: str | None = None) -> str:
    info = lookup_service(port, coarse_label)
    return info.name if info else UNKNOWN_LABEL
