"""Tkinter dashboard for the gate attendance scanner."""
