"""Wake-on-LAN Relay

A small daemon that listens for Wake-on-LAN magic packets arriving from outside
the local networks and rebroadcasts them onto every attached subnet.
"""

__version__ = "1.0.3"
__author__ = "WoL Relay"
