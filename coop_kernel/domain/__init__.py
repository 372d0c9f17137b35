"""Pure kernel domain helpers."""
