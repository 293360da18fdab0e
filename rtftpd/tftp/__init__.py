"""TFTP protocol: packets, requests, option negotiation, transfer windows and sessions."""