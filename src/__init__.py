"""WaifuHospital backend and AI service."""
