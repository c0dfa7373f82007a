"""Telephony audio helpers.

Calls arrive over Twilio Media Streams as 8 kHz mu-law; the realtime model
speaks the same format, while speech synthesis returns 24 kHz PCM.
"""
