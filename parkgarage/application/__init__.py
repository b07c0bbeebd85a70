"""Application layer: garage service, DTOs and commands"""
