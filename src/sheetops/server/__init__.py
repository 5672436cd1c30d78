"""Line-delimited JSON command server for driving a session."""
