"""Wire protocol shared by the rich-presence IPC client."""
