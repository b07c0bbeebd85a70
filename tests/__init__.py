"""Test suite for the parking garage manager"""
