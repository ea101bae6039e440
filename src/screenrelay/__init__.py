"""screenrelay -- Real-time relay between screen producers and viewers.

Producers (remote machines) stream periodic screen captures and accept
remote commands; consumers (viewers) subscribe to one producer's stream
and send commands back. The relay core tracks both kinds of connection,
keeps each producer's latest snapshot, and routes events between them.
"""

__version__ = "0.1.0"
