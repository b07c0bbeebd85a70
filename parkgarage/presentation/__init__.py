"""Presentation: interactive console"""
