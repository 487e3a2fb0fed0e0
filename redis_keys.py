REDIS_ROOM_KEY = "chat:room:{slug}" # room id - JSON encoded room record
REDIS_MESSAGES_KEY = "chat:messages:{slug}" # room id - capped list, newest first
REDIS_PARTICIPANTS_KEY = "chat:participants:{slug}" # room id - set of every wallet seen in the room
REDIS_ONLINE_KEY = "chat:online:{slug}" # room id - set of wallets currently online
REDIS_ROOM_CHANNEL = "chat:{slug}" # room id - pub/sub channel name
REDIS_RATE_LIMIT_KEY = "chat:ratelimit:{slug}:{wallet}" # room id, wallet - fixed window counter

# **Example `chat:room:{id}` value**
# {"roomId": "...", "streamId": "...", "isActive": true, "createdAt": 1700000000000, "participantCount": 0}

# **Published event on `chat:{id}`**
# {"type": "message", "data": {<ChatMessage>}}
