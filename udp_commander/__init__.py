'''Interactive command set for driving a single UDP socket.'''
